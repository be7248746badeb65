"""SQLite store for sounds, daily snapshots, example videos and collection runs."""

import aiosqlite
import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, List, Sequence
import logging

from .config import settings
from .models import (
    CollectionStatus,
    DashboardStats,
    ExampleVideo,
    Sound,
    SoundSnapshot,
)

logger = logging.getLogger(__name__)

SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS sounds (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        artist TEXT NOT NULL DEFAULT 'Unknown',
        duration INTEGER NOT NULL DEFAULT 0,
        genre TEXT,
        cover_url TEXT,
        play_url TEXT,
        usage_count INTEGER NOT NULL DEFAULT 0,
        trajectory TEXT NOT NULL DEFAULT 'new'
            CHECK(trajectory IN ('rising','falling','stable','new')),
        growth_rate REAL NOT NULL DEFAULT 0,
        rank INTEGER NOT NULL DEFAULT 0,
        enriched_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sound_snapshots (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sound_id TEXT NOT NULL REFERENCES sounds(id) ON DELETE CASCADE,
        snapshot_date TEXT NOT NULL,
        usage_count INTEGER NOT NULL DEFAULT 0,
        rank INTEGER NOT NULL DEFAULT 0,
        avg_views REAL NOT NULL DEFAULT 0,
        avg_likes REAL NOT NULL DEFAULT 0,
        avg_shares REAL NOT NULL DEFAULT 0,
        avg_comments REAL NOT NULL DEFAULT 0,
        UNIQUE(sound_id, snapshot_date)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS example_videos (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        sound_id TEXT NOT NULL REFERENCES sounds(id) ON DELETE CASCADE,
        video_url TEXT NOT NULL,
        oembed_html TEXT,
        thumbnail_url TEXT,
        author_username TEXT,
        author_nickname TEXT,
        author_avatar_url TEXT,
        description TEXT,
        create_time INTEGER,
        views INTEGER NOT NULL DEFAULT 0,
        likes INTEGER NOT NULL DEFAULT 0,
        shares INTEGER NOT NULL DEFAULT 0,
        comments INTEGER NOT NULL DEFAULT 0,
        fetched_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS sound_hashtags (
        sound_id TEXT NOT NULL REFERENCES sounds(id) ON DELETE CASCADE,
        hashtag TEXT NOT NULL,
        PRIMARY KEY (sound_id, hashtag)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS collection_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        started_at TEXT NOT NULL,
        completed_at TEXT,
        status TEXT NOT NULL DEFAULT 'running'
            CHECK(status IN ('running','success','partial','failed')),
        source_used TEXT,
        sounds_collected INTEGER NOT NULL DEFAULT 0,
        error_message TEXT
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_snapshots_sound_date ON sound_snapshots(sound_id, snapshot_date)",
    "CREATE INDEX IF NOT EXISTS idx_videos_sound ON example_videos(sound_id)",
    "CREATE INDEX IF NOT EXISTS idx_hashtags_sound ON sound_hashtags(sound_id)",
    "CREATE INDEX IF NOT EXISTS idx_sounds_rank ON sounds(rank)",
]

# Columns update_sound may touch
SOUND_UPDATE_COLUMNS = {
    "title", "artist", "duration", "genre", "cover_url", "play_url",
    "usage_count", "trajectory", "growth_rate", "rank", "enriched_at",
}


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Database:
    """Async SQLite database manager."""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or settings.database_path
        self._connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """Initialize database connection and create tables."""
        # Ensure directory exists
        db_dir = Path(self.db_path).parent
        db_dir.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(self.db_path)
        self._connection.row_factory = aiosqlite.Row

        # Enable WAL mode for better concurrency
        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")
        await self._connection.execute("PRAGMA foreign_keys=ON")

        await self._create_tables()
        logger.info(f"Database connected: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None
            logger.info("Database connection closed")

    @property
    def connected(self) -> bool:
        return self._connection is not None

    async def _create_tables(self) -> None:
        """Create database tables if they don't exist."""
        async with self._lock:
            for statement in SCHEMA:
                await self._connection.execute(statement)
            await self._connection.commit()
            logger.info("Database tables created/verified")

    # Sounds

    async def _upsert_sound(self, sound: Sound) -> None:
        now = utc_now()
        await self._connection.execute(
            """
            INSERT INTO sounds
            (id, title, artist, duration, genre, cover_url, play_url, usage_count,
             trajectory, growth_rate, rank, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                title = excluded.title,
                artist = excluded.artist,
                duration = excluded.duration,
                genre = excluded.genre,
                cover_url = excluded.cover_url,
                play_url = excluded.play_url,
                usage_count = excluded.usage_count,
                trajectory = excluded.trajectory,
                growth_rate = excluded.growth_rate,
                rank = excluded.rank,
                updated_at = excluded.updated_at
            """,
            (
                sound.id,
                sound.title,
                sound.artist,
                sound.duration,
                sound.genre,
                sound.cover_url,
                sound.play_url,
                sound.usage_count,
                sound.trajectory,
                sound.growth_rate,
                sound.rank,
                now,
                now,
            ),
        )

    async def upsert_sound(self, sound: Sound) -> None:
        """Insert or update a sound by id."""
        async with self._lock:
            await self._upsert_sound(sound)
            await self._connection.commit()

    async def _update_sound(self, sound_id: str, fields: dict) -> None:
        unknown = set(fields) - SOUND_UPDATE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update sound columns: {sorted(unknown)}")
        if not fields:
            return

        fields = {**fields, "updated_at": utc_now()}
        assignments = ", ".join(f"{column} = ?" for column in fields)
        values = [v.isoformat() if isinstance(v, datetime) else v for v in fields.values()]
        await self._connection.execute(
            f"UPDATE sounds SET {assignments} WHERE id = ?", (*values, sound_id)
        )

    async def update_sound(self, sound_id: str, **fields) -> None:
        """Update selected columns of a sound."""
        async with self._lock:
            await self._update_sound(sound_id, fields)
            await self._connection.commit()

    async def get_sound(self, sound_id: str) -> Optional[Sound]:
        async with self._lock:
            cursor = await self._connection.execute("SELECT * FROM sounds WHERE id = ?", (sound_id,))
            row = await cursor.fetchone()
        return Sound(**dict(row)) if row else None

    async def list_sounds(self) -> List[Sound]:
        """All tracked sounds ordered by rank."""
        async with self._lock:
            cursor = await self._connection.execute("SELECT * FROM sounds ORDER BY rank ASC, id ASC")
            rows = await cursor.fetchall()
        return [Sound(**dict(row)) for row in rows]

    # Snapshots

    async def _upsert_snapshot(self, snapshot: SoundSnapshot) -> None:
        await self._connection.execute(
            """
            INSERT INTO sound_snapshots
            (sound_id, snapshot_date, usage_count, rank, avg_views, avg_likes, avg_shares, avg_comments)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(sound_id, snapshot_date) DO UPDATE SET
                usage_count = excluded.usage_count,
                rank = excluded.rank,
                avg_views = excluded.avg_views,
                avg_likes = excluded.avg_likes,
                avg_shares = excluded.avg_shares,
                avg_comments = excluded.avg_comments
            """,
            (
                snapshot.sound_id,
                snapshot.snapshot_date,
                snapshot.usage_count,
                snapshot.rank,
                snapshot.avg_views,
                snapshot.avg_likes,
                snapshot.avg_shares,
                snapshot.avg_comments,
            ),
        )

    async def upsert_snapshot(self, snapshot: SoundSnapshot) -> None:
        """Insert or overwrite the snapshot for (sound_id, snapshot_date)."""
        async with self._lock:
            await self._upsert_snapshot(snapshot)
            await self._connection.commit()

    async def get_snapshots(self, sound_id: str) -> List[SoundSnapshot]:
        """Full snapshot history of a sound, oldest first."""
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT * FROM sound_snapshots WHERE sound_id = ? ORDER BY snapshot_date ASC",
                (sound_id,),
            )
            rows = await cursor.fetchall()
        return [SoundSnapshot(**dict(row)) for row in rows]

    async def get_sparkline(self, sound_id: str, limit: int = 14) -> List[int]:
        """Usage counts of the latest ``limit`` snapshots, oldest first."""
        async with self._lock:
            cursor = await self._connection.execute(
                """
                SELECT usage_count FROM sound_snapshots
                WHERE sound_id = ?
                ORDER BY snapshot_date DESC
                LIMIT ?
                """,
                (sound_id, limit),
            )
            rows = await cursor.fetchall()
        return [row["usage_count"] for row in reversed(rows)]

    # Example videos and hashtags

    async def _replace_videos(self, sound_id: str, videos: Sequence[ExampleVideo]) -> None:
        await self._connection.execute("DELETE FROM example_videos WHERE sound_id = ?", (sound_id,))
        now = utc_now()
        for video in videos:
            await self._connection.execute(
                """
                INSERT INTO example_videos
                (sound_id, video_url, oembed_html, thumbnail_url, author_username, author_nickname,
                 author_avatar_url, description, create_time, views, likes, shares, comments, fetched_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    sound_id,
                    video.video_url,
                    video.oembed_html,
                    video.thumbnail_url,
                    video.author_username,
                    video.author_nickname,
                    video.author_avatar_url,
                    video.description,
                    video.create_time,
                    video.views,
                    video.likes,
                    video.shares,
                    video.comments,
                    video.fetched_at.isoformat() if video.fetched_at else now,
                ),
            )

    async def replace_videos(self, sound_id: str, videos: Sequence[ExampleVideo]) -> None:
        """Delete all example videos of a sound and insert ``videos``."""
        async with self._lock:
            await self._replace_videos(sound_id, videos)
            await self._connection.commit()

    async def get_videos(self, sound_id: str) -> List[ExampleVideo]:
        """Example videos of a sound, most viewed first."""
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT * FROM example_videos WHERE sound_id = ? ORDER BY views DESC, id ASC",
                (sound_id,),
            )
            rows = await cursor.fetchall()
        return [ExampleVideo(**dict(row)) for row in rows]

    async def _replace_hashtags(self, sound_id: str, hashtags: Sequence[str]) -> None:
        await self._connection.execute("DELETE FROM sound_hashtags WHERE sound_id = ?", (sound_id,))
        for tag in hashtags:
            await self._connection.execute(
                "INSERT INTO sound_hashtags (sound_id, hashtag) VALUES (?, ?) "
                "ON CONFLICT(sound_id, hashtag) DO NOTHING",
                (sound_id, tag),
            )

    async def replace_hashtags(self, sound_id: str, hashtags: Sequence[str]) -> None:
        """Replace the hashtag set of a sound."""
        async with self._lock:
            await self._replace_hashtags(sound_id, hashtags)
            await self._connection.commit()

    async def get_hashtags(self, sound_id: str) -> List[str]:
        async with self._lock:
            cursor = await self._connection.execute(
                "SELECT hashtag FROM sound_hashtags WHERE sound_id = ? ORDER BY hashtag ASC",
                (sound_id,),
            )
            rows = await cursor.fetchall()
        return [row["hashtag"] for row in rows]

    async def save_sound_cycle(
        self,
        sound: Sound,
        snapshot: SoundSnapshot,
        videos: Sequence[ExampleVideo],
        hashtags: Sequence[str],
    ) -> None:
        """
        Write everything one collection produced for a sound in one transaction.

        On failure nothing of this sound's cycle is kept.
        """
        async with self._lock:
            try:
                await self._upsert_sound(sound)
                await self._upsert_snapshot(snapshot)
                await self._replace_videos(sound.id, videos)
                await self._replace_hashtags(sound.id, hashtags)
                await self._connection.commit()
            except Exception:
                await self._connection.rollback()
                raise

    async def save_enrichment(
        self,
        sound_id: str,
        snapshot: SoundSnapshot,
        videos: Sequence[ExampleVideo],
        hashtags: Sequence[str],
        **fields,
    ) -> None:
        """
        Write one enrichment in a single transaction.

        Example videos are always replaced. Hashtags are only replaced when
        ``hashtags`` is non-empty. ``fields`` are sound columns to update.
        """
        async with self._lock:
            try:
                await self._update_sound(sound_id, fields)
                await self._upsert_snapshot(snapshot)
                await self._replace_videos(sound_id, videos)
                if hashtags:
                    await self._replace_hashtags(sound_id, hashtags)
                await self._connection.commit()
            except Exception:
                await self._connection.rollback()
                raise

    # Collection log

    async def start_collection_log(self) -> int:
        """Create a running log record and return its id."""
        async with self._lock:
            cursor = await self._connection.execute(
                "INSERT INTO collection_log (started_at, status) VALUES (?, 'running')",
                (utc_now(),),
            )
            await self._connection.commit()
            return cursor.lastrowid

    async def finish_collection_log(
        self,
        log_id: int,
        status: CollectionStatus,
        source_used: Optional[str] = None,
        sounds_collected: int = 0,
        error_message: Optional[str] = None,
    ) -> None:
        """Finalize a running log record. Already finalized records are left alone."""
        async with self._lock:
            cursor = await self._connection.execute(
                """
                UPDATE collection_log
                SET completed_at = ?, status = ?, source_used = ?, sounds_collected = ?, error_message = ?
                WHERE id = ? AND status = 'running'
                """,
                (utc_now(), status, source_used, sounds_collected, error_message, log_id),
            )
            await self._connection.commit()
            if cursor.rowcount == 0:
                logger.warning(f"Collection log {log_id} was not running, left unchanged")

    async def get_collection_log(self, log_id: int) -> Optional[dict]:
        async with self._lock:
            cursor = await self._connection.execute("SELECT * FROM collection_log WHERE id = ?", (log_id,))
            row = await cursor.fetchone()
        return dict(row) if row else None

    async def get_last_successful_collection(self) -> Optional[str]:
        """Completion time of the latest run that stored every sound."""
        async with self._lock:
            cursor = await self._connection.execute(
                """
                SELECT completed_at FROM collection_log
                WHERE status = 'success' AND completed_at IS NOT NULL
                ORDER BY completed_at DESC
                LIMIT 1
                """
            )
            row = await cursor.fetchone()
        return row["completed_at"] if row else None

    # Aggregates

    async def get_dashboard_stats(self, sounds: Optional[List[Sound]] = None) -> DashboardStats:
        """Aggregate numbers over all tracked sounds."""
        if sounds is None:
            sounds = await self.list_sounds()

        avg_growth = sum(s.growth_rate for s in sounds) / len(sounds) if sounds else 0.0

        return DashboardStats(
            total_tracked=len(sounds),
            rising_count=sum(1 for s in sounds if s.trajectory == "rising"),
            falling_count=sum(1 for s in sounds if s.trajectory == "falling"),
            avg_growth=round(avg_growth, 2),
            last_updated=await self.get_last_successful_collection(),
        )

    async def get_stats(self) -> dict:
        """Get database statistics."""
        async with self._lock:
            stats = {}
            for table in ("sounds", "sound_snapshots", "example_videos", "collection_log"):
                cursor = await self._connection.execute(f"SELECT COUNT(*) FROM {table}")
                stats[table] = (await cursor.fetchone())[0]
            return stats


# Global database instance
db = Database()
