"""Application configuration via environment variables."""

from functools import lru_cache
from typing import Literal
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Transit Sync API"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = False
    log_level: str = "INFO"

    # Store
    database_url: str = Field(
        default="sqlite+aiosqlite:///./transit.db",
        validation_alias=AliasChoices("DATABASE_URL", "TRANSIT_DATABASE_URL"),
    )
    db_pool_size: int = Field(default=5, ge=1)
    db_max_overflow: int = Field(default=10, ge=0)
    store_batch_size: int = Field(
        default=1000,
        ge=1,
        le=10000,
        validation_alias=AliasChoices("STORE_BATCH_SIZE", "IMPORT_BATCH_SIZE"),
    )

    # Feed endpoints
    feed_api_key: str = Field(default="")
    vehicle_positions_url: str = Field(
        default="https://romamobilita.it/sites/default/files/rome_rtgtfs_vehicle_positions_feed.pb",
        validation_alias=AliasChoices("VEHICLE_POSITIONS_URL", "GTFS_VEHICLE_POSITIONS_URL"),
    )
    trip_updates_url: str = Field(
        default="https://romamobilita.it/sites/default/files/rome_rtgtfs_trip_updates_feed.pb",
        validation_alias=AliasChoices("TRIP_UPDATES_URL", "GTFS_TRIP_UPDATES_URL"),
    )
    static_gtfs_url: str = Field(
        default="https://romamobilita.it/sites/default/files/rome_static_gtfs.zip",
        validation_alias=AliasChoices("STATIC_GTFS_URL", "GTFS_STATIC_URL"),
    )
    connectivity_probe_url: str = "https://romamobilita.it"

    # HTTP client
    http_connect_timeout_sec: float = 5.0
    http_read_timeout_sec: float = 15.0
    static_download_timeout_sec: float = 120.0
    http_max_retries: int = Field(default=3, ge=1)
    http_backoff_base: float = 2.0

    # Static snapshot
    static_import_strict: bool = Field(
        default=False,
        validation_alias=AliasChoices("STATIC_IMPORT_STRICT", "GTFS_IMPORT_STRICT"),
    )
    static_update_max_age_days: int = Field(default=7, ge=1)

    # Realtime sync
    sync_interval_sec: int = Field(default=30, ge=1)
    sync_auto_start: bool = False
    vehicle_stale_after_sec: int = 600
    incident_retention_hours: int = 24

    # Health windows
    health_warning_after_sec: int = 120
    health_unhealthy_after_sec: int = 300

    # Foreign-key sanitizer
    invalid_reference_log_window_sec: int = 30

    # Delay incidents
    delay_low_threshold_min: int = 5
    delay_medium_threshold_min: int = 10
    delay_high_threshold_min: int = 15
    min_affected_trips: int = 3

    def missing_required_env(self) -> list[str]:
        """Return required environment variables that are missing or empty."""
        missing: list[str] = []

        if not self.database_url:
            missing.append("DATABASE_URL")

        return missing

    @property
    def vehicle_positions_full_url(self) -> str:
        """Get full vehicle positions URL with API key."""
        return _with_api_key(self.vehicle_positions_url, self.feed_api_key)

    @property
    def trip_updates_full_url(self) -> str:
        """Get full trip updates URL with API key."""
        return _with_api_key(self.trip_updates_url, self.feed_api_key)

    @property
    def static_gtfs_full_url(self) -> str:
        """Get full static archive URL with API key."""
        return _with_api_key(self.static_gtfs_url, self.feed_api_key)


def _with_api_key(url: str, api_key: str) -> str:
    """Return URL with api key injected unless already present."""
    if not api_key:
        return url

    if "${FEED_API_KEY}" in url:
        url = url.replace("${FEED_API_KEY}", api_key)

    parsed = urlparse(url)
    query_pairs = parse_qsl(parsed.query, keep_blank_values=True)
    if any(key.lower() == "apikey" for key, _ in query_pairs):
        return url

    query_pairs.append(("apikey", api_key))
    new_query = urlencode(query_pairs)
    return urlunparse(parsed._replace(query=new_query))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
