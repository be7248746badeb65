"""Single-flight coordination of collection and enrichment runs.

Scheduled collections, manual refreshes, cron-triggered collections and
request-triggered enrichments all go through one RunCoordinator, so at most
one of them touches the store at a time. A trigger that arrives while a run
is active is rejected with RunInProgress instead of being queued.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from .collector import Collector
from .errors import RunInProgress
from .models import CollectionResult, EnrichmentResponse

logger = logging.getLogger(__name__)


class RunCoordinator:
    """Holds the one active-run lock shared by every trigger."""

    def __init__(self, collector: Collector):
        self.collector = collector
        self._lock = asyncio.Lock()
        self.active: Optional[str] = None
        self.active_since: Optional[datetime] = None
        self.last_result: Optional[CollectionResult] = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def _reject_if_running(self, label: str) -> None:
        # The acquire that follows does not yield while the lock is free
        if self._lock.locked():
            logger.warning(f"Rejected {label}: {self.active} already in progress")
            raise RunInProgress(self.active)

    async def run_collection(self, trigger: str = "manual") -> CollectionResult:
        """Run a collection now, or raise RunInProgress."""
        label = f"{trigger} collection"
        self._reject_if_running(label)
        async with self._lock:
            self.active = label
            self.active_since = datetime.now(timezone.utc)
            logger.info(f"Starting {label}")
            try:
                result = await self.collector.collect()
                self.last_result = result
                return result
            finally:
                self.active = None
                self.active_since = None

    async def run_enrichment(self, sound_id: str) -> EnrichmentResponse:
        """Enrich one sound now, or raise RunInProgress."""
        label = f"enrichment of {sound_id}"
        self._reject_if_running(label)
        async with self._lock:
            self.active = label
            self.active_since = datetime.now(timezone.utc)
            try:
                return await self.collector.enrich_sound(sound_id)
            finally:
                self.active = None
                self.active_since = None

    def status(self) -> dict:
        return {
            "running": self.is_running,
            "active": self.active,
            "active_since": self.active_since.isoformat() if self.active_since else None,
            "last_status": self.last_result.status if self.last_result else None,
        }
