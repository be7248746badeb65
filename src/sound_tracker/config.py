"""Configuration settings using Pydantic."""

from pydantic_settings import BaseSettings
from pydantic import Field
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Sources
    tikapi_key: Optional[str] = Field(default=None, description="TikAPI key for the primary source")
    tikapi_base_url: str = Field(default="https://api.tikapi.io", description="TikAPI REST base URL")
    apify_token: Optional[str] = Field(default=None, description="Apify API token for the scraper source")
    apify_actor: str = Field(
        default="alien_force/tiktok-trending-sounds-tracker",
        description="Apify actor that lists trending sounds",
    )
    source_order: str = Field(
        default="tikapi,creative_center,apify",
        description="Comma-separated source names in priority order",
    )
    top_n: int = Field(default=10, description="Number of sounds kept from a source")

    # Security
    cron_secret: Optional[str] = Field(default=None, description="Bearer secret for POST /collect")

    # Database
    database_path: str = Field(default="./data/sounds.db", description="SQLite database path")

    # Schedule
    collection_hour: int = Field(default=6, description="Hour of the daily collection")
    collection_minute: int = Field(default=0, description="Minute of the daily collection")
    timezone: str = Field(default="UTC", description="Timezone for the daily schedule and snapshot dates")
    collect_on_startup: bool = Field(default=False, description="Run one collection when the server starts")

    # Timeouts (seconds)
    source_timeout: float = Field(default=15.0, description="Timeout for source API and page requests")
    apify_timeout: float = Field(default=120.0, description="Timeout for a synchronous Apify actor run")
    oembed_timeout: float = Field(default=5.0, description="Timeout for one oEmbed request")
    og_timeout: float = Field(default=5.0, description="Timeout for the metadata enrichment pass")
    page_timeout: float = Field(default=15.0, description="Timeout for the full-page enrichment pass")

    # oEmbed batching
    oembed_batch_size: int = Field(default=3, description="Concurrent oEmbed requests per batch")
    oembed_batch_pause: float = Field(default=0.5, description="Pause between oEmbed batches in seconds")
    oembed_max_retries: int = Field(default=2, description="Retries for one oEmbed request")

    # Enrichment
    enrich_stale_hours: int = Field(default=6, description="Hours before an enrichment is considered stale")

    # API server
    api_host: str = Field(default="0.0.0.0", description="API server bind host")
    api_port: int = Field(default=8080, description="API server port")

    # Logging
    log_level: str = Field(default="INFO", description="Log level")

    @property
    def source_list(self) -> List[str]:
        """Parse source names into list."""
        return [s.strip().lower() for s in self.source_order.split(",") if s.strip()]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


# Global settings instance
settings = Settings()
