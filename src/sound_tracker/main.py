"""Main entry point - API server, daily collection schedule and CLI commands."""

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

import uvicorn

from .config import settings
from .database import db
from .errors import RunInProgress
from .fetcher import close_browser_fetcher
from .api import app as api_app, coordinator

# Configure structured JSON logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format='{"time": "%(asctime)s", "level": "%(levelname)s", "logger": "%(name)s", "message": "%(message)s"}',
    datefmt="%Y-%m-%dT%H:%M:%S%z",
)
logger = logging.getLogger(__name__)

# Shutdown flag
_shutdown = asyncio.Event()


def seconds_until_next_run(now: datetime, hour: int, minute: int = 0) -> float:
    """Seconds from ``now`` until the next hour:minute (today or tomorrow)."""
    target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


async def run_scheduled_collection(trigger: str = "scheduled") -> None:
    """Run one collection through the coordinator, logging the outcome."""
    try:
        result = await coordinator.run_collection(trigger=trigger)
        logger.info(f"Collection complete: {result.count} sounds via {result.source} ({result.status})")
    except RunInProgress as e:
        logger.warning(f"Skipped {trigger} collection: {e}")
    except Exception as e:
        logger.error(f"{trigger} collection failed: {e}")


async def schedule_task() -> None:
    """Run a collection every day at the configured time."""
    tz = ZoneInfo(settings.timezone)

    while not _shutdown.is_set():
        delay = seconds_until_next_run(
            datetime.now(tz), settings.collection_hour, settings.collection_minute
        )
        logger.info(f"Next collection in {delay / 3600:.1f}h")

        try:
            await asyncio.wait_for(_shutdown.wait(), timeout=delay)
            break
        except asyncio.TimeoutError:
            pass  # Scheduled time reached

        await run_scheduled_collection()


async def run_api_server() -> None:
    """Run the FastAPI server."""
    config = uvicorn.Config(
        api_app,
        host=settings.api_host,
        port=settings.api_port,
        log_level="warning",
    )
    server = uvicorn.Server(config)

    try:
        await server.serve()
    except asyncio.CancelledError:
        pass
    finally:
        _shutdown.set()


def handle_shutdown(sig, frame):
    """Signal handler for graceful shutdown."""
    logger.info(f"Received signal {sig}, initiating shutdown...")
    _shutdown.set()


async def serve() -> None:
    """Serve the API and run the daily schedule until shutdown."""
    logger.info("=" * 60)
    logger.info("Trending Sound Tracker starting...")
    logger.info(f"Sources (priority order): {settings.source_list}")
    logger.info(
        f"Daily collection at {settings.collection_hour:02d}:{settings.collection_minute:02d} {settings.timezone}"
    )
    logger.info(f"API on {settings.api_host}:{settings.api_port}")
    logger.info("=" * 60)

    # Setup signal handlers
    signal.signal(signal.SIGINT, handle_shutdown)
    signal.signal(signal.SIGTERM, handle_shutdown)

    await db.connect()

    tasks = [
        asyncio.create_task(run_api_server()),
        asyncio.create_task(schedule_task()),
    ]
    if settings.collect_on_startup:
        tasks.append(asyncio.create_task(run_scheduled_collection(trigger="startup")))

    logger.info(f"Started {len(tasks)} tasks")

    await _shutdown.wait()

    logger.info("Shutting down...")

    for task in tasks:
        task.cancel()

    await asyncio.gather(*tasks, return_exceptions=True)

    await close_browser_fetcher()
    await db.close()

    logger.info("Shutdown complete")


async def collect_once() -> int:
    """One-shot collection. Returns the process exit code."""
    await db.connect()
    try:
        result = await coordinator.run_collection(trigger="cli")
    finally:
        await close_browser_fetcher()
        await db.close()

    if result.success:
        logger.info(f"Success: {result.count} sounds collected via {result.source} ({result.status})")
        return 0

    logger.error(f"Collection failed: {result.error}")
    return 1


async def init_db() -> int:
    """Create the database schema."""
    await db.connect()
    await db.close()
    logger.info(f"Schema ready at {settings.database_path}")
    return 0


def run(argv: Optional[list] = None):
    """Entry point for running the application."""
    parser = argparse.ArgumentParser(prog="sound-tracker", description="Trending sound tracker")
    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=["serve", "collect", "init-db"],
        help="serve the API and schedule (default), run one collection, or create the schema",
    )
    args = parser.parse_args(argv)

    try:
        if args.command == "collect":
            sys.exit(asyncio.run(collect_once()))
        elif args.command == "init-db":
            sys.exit(asyncio.run(init_db()))
        else:
            asyncio.run(serve())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    run()
