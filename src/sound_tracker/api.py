"""FastAPI server: collection triggers, dashboard data, enrichment and health."""

from fastapi import FastAPI, Header
from fastapi.responses import JSONResponse
from datetime import datetime
from typing import Optional
import hmac
import logging

from .cascade import SourceCascade
from .collector import Collector
from .config import settings
from .coordinator import RunCoordinator
from .database import db
from .errors import EnrichmentError, RunInProgress, SoundNotFound
from .models import SoundWithDetails, SoundWithSparkline
from .sources import build_sources

logger = logging.getLogger(__name__)

app = FastAPI(title="Trending Sound Tracker", version="1.0.0")

coordinator = RunCoordinator(Collector(db, SourceCascade(build_sources(settings))))

SPARKLINE_POINTS = 14

# Per-sound error text is internal
PRIVATE_RESULT_FIELDS = {"failed_sounds"}

# Track system state
_start_time = datetime.now()


def error_response(status_code: int, message: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def _authorized(authorization: Optional[str]) -> bool:
    if not settings.cron_secret:
        return True
    expected = f"Bearer {settings.cron_secret}"
    return hmac.compare_digest((authorization or "").encode(), expected.encode())


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Trending Sound Tracker",
        "version": "1.0.0",
        "status": "running",
    }


@app.post("/collect")
async def collect(authorization: Optional[str] = Header(default=None)):
    """Scheduled collection trigger, secured with the cron bearer secret."""
    if not _authorized(authorization):
        return error_response(401, "Unauthorized")

    try:
        result = await coordinator.run_collection(trigger="cron")
    except RunInProgress as e:
        return error_response(429, str(e))
    except Exception as e:
        logger.exception(f"Cron collection failed: {e}")
        return error_response(500, "Cron collection failed")

    return result.model_dump(exclude_none=True, exclude=PRIVATE_RESULT_FIELDS)


@app.post("/refresh")
async def refresh():
    """Manual collection trigger."""
    try:
        result = await coordinator.run_collection(trigger="manual")
    except RunInProgress:
        return error_response(429, "A refresh is already in progress")
    except Exception as e:
        logger.exception(f"Refresh failed: {e}")
        return error_response(500, "Refresh failed unexpectedly")

    body = result.model_dump(exclude_none=True, exclude=PRIVATE_RESULT_FIELDS)
    if not result.success:
        return JSONResponse(status_code=502, content={**body, "error": result.error or "Collection failed"})

    body["message"] = f"Collected {result.count} sounds via {result.source}"
    return body


@app.get("/sounds")
async def list_sounds():
    """All sounds by rank with a usage sparkline, plus dashboard stats."""
    try:
        sounds = await db.list_sounds()
        rows = []
        for sound in sounds:
            sparkline = await db.get_sparkline(sound.id, SPARKLINE_POINTS)
            rows.append(SoundWithSparkline(**sound.model_dump(), sparkline=sparkline))
        stats = await db.get_dashboard_stats(sounds)
    except Exception as e:
        logger.exception(f"Failed to fetch sounds: {e}")
        return error_response(500, "Failed to fetch sounds")

    return {
        "sounds": [row.model_dump(mode="json") for row in rows],
        "stats": stats.model_dump(mode="json"),
    }


@app.get("/sounds/{sound_id}")
async def get_sound(sound_id: str):
    """One sound with its snapshot history, example videos and hashtags."""
    try:
        sound = await db.get_sound(sound_id)
        if sound is None:
            return error_response(404, "Sound not found")

        details = SoundWithDetails(
            **sound.model_dump(),
            snapshots=await db.get_snapshots(sound_id),
            example_videos=await db.get_videos(sound_id),
            hashtags=await db.get_hashtags(sound_id),
        )
    except Exception as e:
        logger.exception(f"Failed to fetch sound {sound_id}: {e}")
        return error_response(500, "Failed to fetch sound")

    return details.model_dump(mode="json")


@app.get("/enrich/{sound_id}")
async def enrich(sound_id: str):
    """Enrich one sound from its live page unless it is still fresh."""
    try:
        result = await coordinator.run_enrichment(sound_id)
    except SoundNotFound:
        return error_response(404, "Sound not found")
    except RunInProgress as e:
        return error_response(429, str(e))
    except EnrichmentError as e:
        logger.error(f"Enrichment of {sound_id} failed: {e}")
        return error_response(502, "Enrichment failed, could not fetch TikTok data")
    except Exception as e:
        logger.exception(f"Enrichment of {sound_id} crashed: {e}")
        return error_response(500, "Enrichment failed")

    return result.model_dump(mode="json", exclude_none=True)


@app.get("/healthz")
async def healthcheck():
    """Health check endpoint for container orchestration."""
    uptime_seconds = (datetime.now() - _start_time).total_seconds()

    # Check database connectivity
    db_healthy = True
    last_collection = None
    try:
        await db.get_stats()
        last_collection = await db.get_last_successful_collection()
    except Exception as e:
        db_healthy = False
        logger.error(f"Database health check failed: {e}")

    return {
        "status": "healthy" if db_healthy else "unhealthy",
        "uptime_seconds": int(uptime_seconds),
        "database": "connected" if db_healthy else "disconnected",
        "last_collection": last_collection,
        "runs": coordinator.status(),
        "sources": settings.source_list,
    }


@app.get("/ready")
async def readiness():
    """Readiness probe for Kubernetes."""
    try:
        await db.get_stats()
        return {"ready": True}
    except Exception:
        return {"ready": False}
