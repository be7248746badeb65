"""Shared pytest fixtures for sound tracker tests."""

from __future__ import annotations

from typing import List, Optional

import pytest

from sound_tracker.config import Settings
from sound_tracker.database import Database
from sound_tracker.errors import SourceError
from sound_tracker.models import CollectedSound, CollectedVideo, SoundSnapshot
from sound_tracker.sources import SoundSource


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings with no credentials and no pauses."""
    return Settings(
        tikapi_key=None,
        apify_token=None,
        cron_secret=None,
        database_path=str(tmp_path / "sounds.db"),
        oembed_batch_pause=0.0,
        timezone="UTC",
    )


@pytest.fixture
async def database(tmp_path):
    """A connected database in a temporary directory."""
    store = Database(str(tmp_path / "sounds.db"))
    await store.connect()
    yield store
    await store.close()


def make_snapshots(counts: List[int], sound_id: str = "s1") -> List[SoundSnapshot]:
    """Snapshots on consecutive days in January with the given usage counts."""
    return [
        SoundSnapshot(sound_id=sound_id, snapshot_date=f"2026-01-{day + 1:02d}", usage_count=count)
        for day, count in enumerate(counts)
    ]


def make_sound(sound_id: str, usage_count: int = 1000, videos: int = 2, title: Optional[str] = None) -> CollectedSound:
    return CollectedSound(
        id=sound_id,
        title=title or f"Sound {sound_id}",
        artist="Artist",
        duration=30,
        usage_count=usage_count,
        videos=[
            CollectedVideo(
                video_url=f"https://www.tiktok.com/@user{i}/video/{sound_id}{i}",
                views=100 * (i + 1),
                likes=10 * (i + 1),
                shares=i,
                comments=2 * i,
            )
            for i in range(videos)
        ],
        hashtags=["fyp", "dance"],
    )


class StaticSource(SoundSource):
    """Source returning a fixed list, or raising when given an error."""

    def __init__(self, name: str, sounds: Optional[List[CollectedSound]] = None, error: Optional[str] = None):
        super().__init__(Settings())
        self.name = name
        self.sounds = sounds or []
        self.error = error
        self.calls = 0

    async def fetch_top(self) -> List[CollectedSound]:
        self.calls += 1
        if self.error:
            raise SourceError(self.error)
        return self._finish(list(self.sounds))
