"""Pydantic data models for sounds, snapshots and collection runs."""

from pydantic import BaseModel, Field
from typing import Optional, List, Literal, Dict
from datetime import datetime

Trajectory = Literal["rising", "falling", "stable", "new"]
CollectionStatus = Literal["running", "success", "partial", "failed"]


class CollectedVideo(BaseModel):
    """An example video as returned by a source adapter."""

    video_url: str
    thumbnail_url: Optional[str] = None
    author_username: Optional[str] = None
    author_nickname: Optional[str] = None
    views: int = 0
    likes: int = 0
    shares: int = 0
    comments: int = 0


class CollectedSound(BaseModel):
    """A normalized candidate sound from one source."""

    id: str = Field(..., description="Provider sound id, stable across collections")
    title: str = Field(default="Unknown")
    artist: str = Field(default="Unknown")
    duration: int = Field(default=0, ge=0, description="Duration in seconds")
    cover_url: Optional[str] = None
    play_url: Optional[str] = None
    usage_count: int = Field(default=0, ge=0, description="Videos using this sound")
    videos: List[CollectedVideo] = Field(default_factory=list)
    hashtags: List[str] = Field(default_factory=list)


class Sound(BaseModel):
    """A tracked sound as stored."""

    id: str
    title: str
    artist: str = "Unknown"
    duration: int = 0
    genre: Optional[str] = None
    cover_url: Optional[str] = None
    play_url: Optional[str] = None
    usage_count: int = 0
    trajectory: Trajectory = "new"
    growth_rate: float = 0.0
    rank: int = 0
    enriched_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SoundSnapshot(BaseModel):
    """One daily observation of a sound."""

    id: Optional[int] = None
    sound_id: str
    snapshot_date: str  # YYYY-MM-DD
    usage_count: int = 0
    rank: int = 0
    avg_views: float = 0.0
    avg_likes: float = 0.0
    avg_shares: float = 0.0
    avg_comments: float = 0.0


class ExampleVideo(BaseModel):
    """A stored example usage of a sound."""

    id: Optional[int] = None
    sound_id: str
    video_url: str
    oembed_html: Optional[str] = None
    thumbnail_url: Optional[str] = None
    author_username: Optional[str] = None
    author_nickname: Optional[str] = None
    author_avatar_url: Optional[str] = None
    description: Optional[str] = None
    create_time: Optional[int] = None
    views: int = 0
    likes: int = 0
    shares: int = 0
    comments: int = 0
    fetched_at: Optional[datetime] = None


class EnrichedVideo(BaseModel):
    """An example video scraped from the live sound page."""

    video_url: str
    thumbnail_url: Optional[str] = None
    author_username: Optional[str] = None
    author_nickname: Optional[str] = None
    author_avatar_url: Optional[str] = None
    description: Optional[str] = None
    create_time: Optional[int] = None
    views: int = 0
    likes: int = 0
    shares: int = 0
    comments: int = 0


class PageData(BaseModel):
    """Videos and hashtags found on a sound page."""

    videos: List[EnrichedVideo] = Field(default_factory=list)
    hashtags: List[str] = Field(default_factory=list)


class PageParseResult(BaseModel):
    """Outcome of parsing the embedded page data.

    ``reason`` is set when ``data`` is None: ``marker_not_found``,
    ``invalid_json`` or ``unsupported_shape``.
    """

    data: Optional[PageData] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.data is not None


class EnrichmentResult(BaseModel):
    """Merged result of both enrichment passes."""

    usage_count: int
    videos: List[EnrichedVideo] = Field(default_factory=list)
    hashtags: List[str] = Field(default_factory=list)
    page_available: bool = Field(default=False, description="Whether the full-page pass succeeded")


class EnrichmentResponse(BaseModel):
    """Result of a request-triggered enrichment."""

    status: Literal["fresh", "enriched"]
    enriched_at: Optional[datetime] = None
    usage_count: Optional[int] = None
    videos_count: Optional[int] = None
    hashtags_count: Optional[int] = None


class CollectionLog(BaseModel):
    """One collection run."""

    id: Optional[int] = None
    started_at: datetime
    completed_at: Optional[datetime] = None
    status: CollectionStatus = "running"
    source_used: Optional[str] = None
    sounds_collected: int = 0
    error_message: Optional[str] = None


class CollectionResult(BaseModel):
    """Result of a collection run."""

    success: bool
    source: str = "none"
    count: int = 0
    status: CollectionStatus = "failed"
    error: Optional[str] = None
    failed_sounds: Dict[str, str] = Field(default_factory=dict)


class SoundWithSparkline(Sound):
    """Dashboard row."""

    sparkline: List[int] = Field(default_factory=list)


class SoundWithDetails(Sound):
    """Sound detail with its history and samples."""

    snapshots: List[SoundSnapshot] = Field(default_factory=list)
    example_videos: List[ExampleVideo] = Field(default_factory=list)
    hashtags: List[str] = Field(default_factory=list)


class DashboardStats(BaseModel):
    """Aggregate dashboard numbers."""

    total_tracked: int = 0
    rising_count: int = 0
    falling_count: int = 0
    avg_growth: float = 0.0
    last_updated: Optional[datetime] = None
