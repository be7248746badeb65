"""Collection orchestration: cascade, oEmbed, trend signals and persistence."""

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from .cascade import SourceCascade
from .config import Settings, settings as default_settings
from .database import Database
from .enricher import SoundEnricher, is_fresh
from .errors import AllSourcesFailed, SoundNotFound
from .models import (
    CollectedSound,
    CollectionResult,
    EnrichmentResponse,
    ExampleVideo,
    Sound,
    SoundSnapshot,
)
from .oembed import fetch_oembed_batch
from .trending import calculate_growth_rate, calculate_trajectory, classify_genre

logger = logging.getLogger(__name__)

MAX_STORED_VIDEOS = 5

OEmbedResolver = Callable[[List[str]], Awaitable[Dict[str, str]]]


def average_engagement(videos: Sequence) -> Tuple[float, float, float, float]:
    """Mean (views, likes, shares, comments) over ``videos``; zeros when empty."""
    if not videos:
        return (0.0, 0.0, 0.0, 0.0)
    n = len(videos)
    return (
        sum(v.views for v in videos) / n,
        sum(v.likes for v in videos) / n,
        sum(v.shares for v in videos) / n,
        sum(v.comments for v in videos) / n,
    )


class Collector:
    """Owns every write to the store for collection and enrichment runs."""

    def __init__(
        self,
        store: Database,
        cascade: SourceCascade,
        enricher: Optional[SoundEnricher] = None,
        oembed: Optional[OEmbedResolver] = None,
        config: Optional[Settings] = None,
    ):
        self.store = store
        self.cascade = cascade
        self.config = config or default_settings
        self.enricher = enricher or SoundEnricher(self.config)
        self._oembed = oembed or (lambda urls: fetch_oembed_batch(urls, self.config))

    def today(self) -> str:
        """Snapshot date key (YYYY-MM-DD) in the configured timezone."""
        return datetime.now(ZoneInfo(self.config.timezone)).strftime("%Y-%m-%d")

    async def _resolve_embeds(self, urls: List[str]) -> Dict[str, str]:
        if not urls:
            return {}
        logger.info(f"Fetching oEmbed for {len(urls)} videos...")
        try:
            return await self._oembed(urls)
        except Exception as e:
            logger.warning(f"oEmbed lookup failed, continuing without embeds: {e}")
            return {}

    async def collect(self) -> CollectionResult:
        """
        Run one full collection.

        Every sound is written in its own transaction. The run ends as
        ``success`` when all sounds were written, ``partial`` when some were,
        and ``failed`` when none were or every source failed.
        """
        log_id = await self.store.start_collection_log()
        try:
            return await self._collect(log_id)
        except Exception as e:
            logger.exception(f"Collection {log_id} crashed: {e}")
            await self.store.finish_collection_log(log_id, "failed", error_message="Unexpected error")
            raise

    async def _collect(self, log_id: int) -> CollectionResult:
        try:
            source, sounds = await self.cascade.fetch()
        except AllSourcesFailed as e:
            await self.store.finish_collection_log(log_id, "failed", error_message=str(e))
            return CollectionResult(success=False, error="All data sources failed")

        urls = [video.video_url for sound in sounds for video in sound.videos[:MAX_STORED_VIDEOS] if video.video_url]
        embeds = await self._resolve_embeds(urls)

        today = self.today()
        failed: Dict[str, str] = {}
        written = 0

        for rank, collected in enumerate(sounds, start=1):
            try:
                await self._save_collected(collected, rank, today, embeds)
                written += 1
            except Exception as e:
                logger.error(f"Failed to store sound {collected.id}: {e}")
                failed[collected.id] = str(e)

        if not failed:
            status = "success"
            error = None
        elif written:
            status = "partial"
            error = f"{len(failed)} of {len(sounds)} sounds failed to store"
        else:
            status = "failed"
            error = "No sounds could be stored"

        # Per-sound messages go to the run log only
        log_error = error
        if failed:
            log_error = f"{error} (" + "; ".join(f"{sid}: {msg}" for sid, msg in failed.items()) + ")"

        await self.store.finish_collection_log(
            log_id, status, source_used=source, sounds_collected=written, error_message=log_error
        )
        logger.info(f"Collection {log_id} {status}: {written}/{len(sounds)} sounds via {source}")

        return CollectionResult(
            success=status != "failed",
            source=source,
            count=written,
            status=status,
            error=error,
            failed_sounds=failed,
        )

    async def _save_collected(
        self,
        collected: CollectedSound,
        rank: int,
        today: str,
        embeds: Dict[str, str],
    ) -> None:
        history = await self.store.get_snapshots(collected.id)

        videos = collected.videos[:MAX_STORED_VIDEOS]
        avg_views, avg_likes, avg_shares, avg_comments = average_engagement(videos)

        snapshot = SoundSnapshot(
            sound_id=collected.id,
            snapshot_date=today,
            usage_count=collected.usage_count,
            rank=rank,
            avg_views=avg_views,
            avg_likes=avg_likes,
            avg_shares=avg_shares,
            avg_comments=avg_comments,
        )

        # A same-day re-collection replaces today's stored point
        series = [s for s in history if s.snapshot_date != today] + [snapshot]

        sound = Sound(
            id=collected.id,
            title=collected.title,
            artist=collected.artist,
            duration=collected.duration,
            genre=classify_genre(collected.title, collected.artist),
            cover_url=collected.cover_url,
            play_url=collected.play_url,
            usage_count=collected.usage_count,
            trajectory=calculate_trajectory(series),
            growth_rate=calculate_growth_rate(series),
            rank=rank,
        )

        rows = [
            ExampleVideo(sound_id=collected.id, oembed_html=embeds.get(video.video_url), **video.model_dump())
            for video in videos
        ]

        await self.store.save_sound_cycle(sound, snapshot, rows, collected.hashtags)

    async def enrich_sound(self, sound_id: str) -> EnrichmentResponse:
        """
        Refresh one sound from its live page unless it was enriched recently.

        Raises SoundNotFound for unknown ids and EnrichmentError when the page
        metadata cannot be read; in both cases nothing is written.
        """
        sound = await self.store.get_sound(sound_id)
        if sound is None:
            raise SoundNotFound(sound_id)

        stored_videos = await self.store.get_videos(sound_id)
        if is_fresh(sound, len(stored_videos), stale_hours=self.config.enrich_stale_hours):
            return EnrichmentResponse(status="fresh", enriched_at=sound.enriched_at)

        result = await self.enricher.enrich(sound_id, sound.title)
        if not result.page_available:
            logger.info(f"Metadata-only enrichment for {sound_id}, example videos cleared")

        embeds = await self._resolve_embeds([v.video_url for v in result.videos])
        videos = [
            ExampleVideo(sound_id=sound_id, oembed_html=embeds.get(v.video_url), **v.model_dump())
            for v in result.videos
        ]

        today = self.today()
        avg_views, avg_likes, avg_shares, avg_comments = average_engagement(videos)
        snapshot = SoundSnapshot(
            sound_id=sound_id,
            snapshot_date=today,
            usage_count=result.usage_count,
            rank=sound.rank,
            avg_views=round(avg_views),
            avg_likes=round(avg_likes),
            avg_shares=round(avg_shares),
            avg_comments=round(avg_comments),
        )

        history = await self.store.get_snapshots(sound_id)
        series = [s for s in history if s.snapshot_date != today] + [snapshot]

        enriched_at = datetime.now(timezone.utc)
        await self.store.save_enrichment(
            sound_id,
            snapshot,
            videos,
            result.hashtags,
            usage_count=result.usage_count,
            trajectory=calculate_trajectory(series),
            growth_rate=calculate_growth_rate(series),
            enriched_at=enriched_at,
        )

        return EnrichmentResponse(
            status="enriched",
            enriched_at=enriched_at,
            usage_count=result.usage_count,
            videos_count=len(result.videos),
            hashtags_count=len(result.hashtags),
        )
