"""Tests for single-flight run coordination."""

import asyncio
from datetime import datetime

import pytest

from sound_tracker.coordinator import RunCoordinator
from sound_tracker.errors import RunInProgress
from sound_tracker.main import seconds_until_next_run
from sound_tracker.models import CollectionResult, EnrichmentResponse


class SlowCollector:
    """Collector stand-in that blocks until released."""

    def __init__(self):
        self.release = asyncio.Event()
        self.started = asyncio.Event()
        self.collections = 0

    async def collect(self):
        self.collections += 1
        self.started.set()
        await self.release.wait()
        return CollectionResult(success=True, source="tikapi", count=3, status="success")

    async def enrich_sound(self, sound_id):
        return EnrichmentResponse(status="fresh")


async def test_concurrent_collection_is_rejected():
    collector = SlowCollector()
    coordinator = RunCoordinator(collector)

    first = asyncio.create_task(coordinator.run_collection(trigger="scheduled"))
    await collector.started.wait()

    assert coordinator.is_running
    assert coordinator.status()["active"] == "scheduled collection"

    with pytest.raises(RunInProgress) as exc_info:
        await coordinator.run_collection(trigger="manual")
    assert exc_info.value.active == "scheduled collection"

    collector.release.set()
    result = await first

    assert result.count == 3
    assert collector.collections == 1
    assert not coordinator.is_running
    assert coordinator.status()["last_status"] == "success"


async def test_enrichment_rejected_during_collection():
    collector = SlowCollector()
    coordinator = RunCoordinator(collector)

    first = asyncio.create_task(coordinator.run_collection())
    await collector.started.wait()

    with pytest.raises(RunInProgress):
        await coordinator.run_enrichment("s1")

    collector.release.set()
    await first

    response = await coordinator.run_enrichment("s1")
    assert response.status == "fresh"


async def test_lock_released_after_failure():
    class FailingCollector:
        async def collect(self):
            raise RuntimeError("boom")

    coordinator = RunCoordinator(FailingCollector())

    with pytest.raises(RuntimeError):
        await coordinator.run_collection()

    assert not coordinator.is_running
    assert coordinator.active is None


@pytest.mark.parametrize(
    "now,expected_hours",
    [
        (datetime(2026, 5, 1, 5, 0), 1),
        (datetime(2026, 5, 1, 6, 0), 24),
        (datetime(2026, 5, 1, 18, 0), 12),
    ],
)
def test_seconds_until_next_run(now, expected_hours):
    assert seconds_until_next_run(now, 6) == expected_hours * 3600
