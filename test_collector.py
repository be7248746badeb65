"""Tests for collection runs and request-triggered enrichment."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from sound_tracker.cascade import SourceCascade
from sound_tracker.collector import Collector, average_engagement
from sound_tracker.errors import EnrichmentError, SoundNotFound
from sound_tracker.models import EnrichedVideo, EnrichmentResult, ExampleVideo, Sound, SoundSnapshot

from conftest import StaticSource, make_sound


async def fake_oembed(urls):
    return {url: f"<blockquote>{url}</blockquote>" for url in urls}


def make_collector(database, test_settings, sources, enricher=None, oembed=fake_oembed) -> Collector:
    return Collector(
        database,
        SourceCascade(sources),
        enricher=enricher or AsyncMock(),
        oembed=oembed,
        config=test_settings,
    )


async def recent_log(database) -> dict:
    last = await database.get_stats()
    return await database.get_collection_log(last["collection_log"])


def test_average_engagement():
    videos = [ExampleVideo(sound_id="s", video_url="u", views=10, likes=4), ExampleVideo(sound_id="s", video_url="v", views=30)]
    assert average_engagement(videos) == (20.0, 2.0, 0.0, 0.0)
    assert average_engagement([]) == (0.0, 0.0, 0.0, 0.0)


class TestCollect:
    async def test_successful_run(self, database, test_settings):
        source = StaticSource("tikapi", [make_sound("a", 500), make_sound("b", 900, videos=0)])
        collector = make_collector(database, test_settings, [source])

        result = await collector.collect()

        assert result.success
        assert result.status == "success"
        assert result.source == "tikapi"
        assert result.count == 2

        sounds = await database.list_sounds()
        assert [(s.id, s.rank, s.trajectory) for s in sounds] == [("a", 1, "new"), ("b", 2, "new")]

        snapshots = await database.get_snapshots("a")
        assert len(snapshots) == 1
        assert snapshots[0].snapshot_date == collector.today()
        assert snapshots[0].avg_views == 150.0
        assert snapshots[0].rank == 1

        videos = await database.get_videos("a")
        assert len(videos) == 2
        assert all(v.oembed_html for v in videos)
        assert await database.get_hashtags("a") == ["dance", "fyp"]

        log = await recent_log(database)
        assert log["status"] == "success"
        assert log["source_used"] == "tikapi"
        assert log["sounds_collected"] == 2

    async def test_fallback_source_is_recorded(self, database, test_settings):
        sources = [StaticSource("tikapi", error="no key"), StaticSource("creative_center", [make_sound("a")])]
        result = await make_collector(database, test_settings, sources).collect()

        assert result.source == "creative_center"
        assert (await recent_log(database))["source_used"] == "creative_center"

    async def test_all_sources_failed(self, database, test_settings):
        sources = [StaticSource("tikapi", error="down"), StaticSource("apify", error="down")]
        result = await make_collector(database, test_settings, sources).collect()

        assert not result.success
        assert result.status == "failed"
        assert result.error == "All data sources failed"
        assert await database.list_sounds() == []

        log = await recent_log(database)
        assert log["status"] == "failed"
        assert "tikapi: down" in log["error_message"]

    async def test_partial_run(self, database, test_settings, monkeypatch):
        original = database.save_sound_cycle

        async def flaky_save(sound, *args):
            if sound.id == "b":
                raise RuntimeError("disk full")
            await original(sound, *args)

        monkeypatch.setattr(database, "save_sound_cycle", flaky_save)
        source = StaticSource("tikapi", [make_sound("a"), make_sound("b"), make_sound("c")])

        result = await make_collector(database, test_settings, [source]).collect()

        assert result.success
        assert result.status == "partial"
        assert result.count == 2
        assert result.failed_sounds == {"b": "disk full"}
        assert [s.id for s in await database.list_sounds()] == ["a", "c"]

        log = await recent_log(database)
        assert log["status"] == "partial"
        assert log["sounds_collected"] == 2
        assert "b: disk full" in log["error_message"]
        assert "disk full" not in result.error

    async def test_nothing_written_is_failed(self, database, test_settings, monkeypatch):
        async def broken_save(*args):
            raise RuntimeError("locked")

        monkeypatch.setattr(database, "save_sound_cycle", broken_save)
        result = await make_collector(database, test_settings, [StaticSource("tikapi", [make_sound("a")])]).collect()

        assert not result.success
        assert result.status == "failed"
        assert (await recent_log(database))["status"] == "failed"

    async def test_oembed_failure_does_not_fail_run(self, database, test_settings):
        async def broken_oembed(urls):
            raise RuntimeError("rate limited")

        collector = make_collector(database, test_settings, [StaticSource("tikapi", [make_sound("a")])], oembed=broken_oembed)
        result = await collector.collect()

        assert result.status == "success"
        assert all(v.oembed_html is None for v in await database.get_videos("a"))

    async def test_same_day_rerun_is_idempotent(self, database, test_settings):
        # Two earlier days of history, then today collected twice
        await database.upsert_sound(Sound(id="a", title="A"))
        for date, count in (("2000-01-01", 100), ("2000-01-02", 200)):
            await database.upsert_snapshot(SoundSnapshot(sound_id="a", snapshot_date=date, usage_count=count))

        source = StaticSource("tikapi", [make_sound("a", 400)])
        collector = make_collector(database, test_settings, [source])

        await collector.collect()
        first = await database.get_sound("a")
        await collector.collect()
        second = await database.get_sound("a")

        assert len(await database.get_snapshots("a")) == 3
        assert first.trajectory == second.trajectory == "rising"
        assert first.growth_rate == second.growth_rate == 300.0

    async def test_falling_after_history(self, database, test_settings):
        await database.upsert_sound(Sound(id="a", title="A"))
        await database.upsert_snapshot(SoundSnapshot(sound_id="a", snapshot_date="2000-01-01", usage_count=100))

        await make_collector(database, test_settings, [StaticSource("tikapi", [make_sound("a", 50)])]).collect()

        sound = await database.get_sound("a")
        assert sound.trajectory == "falling"
        assert sound.growth_rate == -50.0


class TestEnrichSound:
    async def seed(self, database, enriched_at=None, usage_count=1000):
        collector_sound = make_sound("s1", usage_count)
        await database.upsert_sound(Sound(id="s1", title="My Song", usage_count=usage_count, rank=4))
        await database.replace_videos(
            "s1",
            [ExampleVideo(sound_id="s1", video_url=v.video_url, views=v.views, likes=v.likes) for v in collector_sound.videos],
        )
        await database.replace_hashtags("s1", ["old"])
        if enriched_at:
            await database.update_sound("s1", enriched_at=enriched_at)

    async def test_unknown_sound(self, database, test_settings):
        collector = make_collector(database, test_settings, [])
        with pytest.raises(SoundNotFound):
            await collector.enrich_sound("nope")

    async def test_fresh_sound_is_not_refetched(self, database, test_settings):
        await self.seed(database, enriched_at=datetime.now(timezone.utc) - timedelta(hours=1))
        enricher = AsyncMock()
        collector = make_collector(database, test_settings, [], enricher=enricher)

        response = await collector.enrich_sound("s1")

        assert response.status == "fresh"
        enricher.enrich.assert_not_awaited()

    async def test_full_enrichment_replaces_videos_and_hashtags(self, database, test_settings):
        await self.seed(database, enriched_at=datetime.now(timezone.utc) - timedelta(hours=7))
        enricher = AsyncMock()
        enricher.enrich.return_value = EnrichmentResult(
            usage_count=5000,
            videos=[
                EnrichedVideo(video_url="https://v/new1", views=300, likes=31),
                EnrichedVideo(video_url="https://v/new2", views=100, likes=10),
            ],
            hashtags=["viral"],
            page_available=True,
        )
        collector = make_collector(database, test_settings, [], enricher=enricher)

        response = await collector.enrich_sound("s1")

        enricher.enrich.assert_awaited_once_with("s1", "My Song")
        assert response.status == "enriched"
        assert response.usage_count == 5000
        assert response.videos_count == 2
        assert response.hashtags_count == 1

        sound = await database.get_sound("s1")
        assert sound.usage_count == 5000
        assert sound.enriched_at is not None
        assert sound.rank == 4

        videos = await database.get_videos("s1")
        assert [v.video_url for v in videos] == ["https://v/new1", "https://v/new2"]
        assert videos[0].oembed_html
        assert await database.get_hashtags("s1") == ["viral"]

        snapshots = await database.get_snapshots("s1")
        assert snapshots[-1].usage_count == 5000
        assert snapshots[-1].avg_views == 200
        assert snapshots[-1].avg_likes == 20
        assert snapshots[-1].rank == 4

    async def test_metadata_only_enrichment_clears_videos(self, database, test_settings):
        await self.seed(database)
        enricher = AsyncMock()
        enricher.enrich.return_value = EnrichmentResult(usage_count=2500)
        collector = make_collector(database, test_settings, [], enricher=enricher)

        response = await collector.enrich_sound("s1")

        assert response.status == "enriched"
        assert response.videos_count == 0
        sound = await database.get_sound("s1")
        assert sound.usage_count == 2500
        assert sound.enriched_at is not None
        assert await database.get_videos("s1") == []
        assert await database.get_hashtags("s1") == ["old"]
        assert (await database.get_snapshots("s1"))[-1].avg_views == 0

    async def test_metadata_only_enrichment_is_retried(self, database, test_settings):
        await self.seed(database)
        enricher = AsyncMock()
        enricher.enrich.return_value = EnrichmentResult(usage_count=2500)
        collector = make_collector(database, test_settings, [], enricher=enricher)

        await collector.enrich_sound("s1")
        second = await collector.enrich_sound("s1")

        assert second.status == "enriched"
        assert enricher.enrich.await_count == 2

    async def test_failed_write_leaves_sound_untouched(self, database, test_settings, monkeypatch):
        await self.seed(database)
        original = database._replace_videos

        async def broken_replace(*args):
            raise RuntimeError("disk full")

        monkeypatch.setattr(database, "_replace_videos", broken_replace)
        enricher = AsyncMock()
        enricher.enrich.return_value = EnrichmentResult(usage_count=2500)
        collector = make_collector(database, test_settings, [], enricher=enricher)

        with pytest.raises(RuntimeError):
            await collector.enrich_sound("s1")

        sound = await database.get_sound("s1")
        assert sound.usage_count == 1000
        assert sound.enriched_at is None
        assert await database.get_snapshots("s1") == []
        monkeypatch.setattr(database, "_replace_videos", original)
        assert len(await database.get_videos("s1")) == 2

    async def test_metadata_failure_writes_nothing(self, database, test_settings):
        await self.seed(database)
        enricher = AsyncMock()
        enricher.enrich.side_effect = EnrichmentError("upstream returned 403")
        collector = make_collector(database, test_settings, [], enricher=enricher)

        with pytest.raises(EnrichmentError):
            await collector.enrich_sound("s1")

        sound = await database.get_sound("s1")
        assert sound.usage_count == 1000
        assert sound.enriched_at is None
        assert await database.get_snapshots("s1") == []
