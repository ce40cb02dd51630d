"""
Pydantic v2 Configuration Models for CatalogSync

Provides strict, typed configuration for all CatalogSync subsystems:
- Catalog store location and write retries
- Asset cache layout, image sizes and licence policy
- HTTP client settings (timeouts, user agent)
- Fetch retry and rate limiting policies
- Scheduling (discovery interval, backup time of day, retention)
- Monitor and logging settings
- Source descriptors
- Top-level CatalogSyncConfig as single source of truth

All models use extra="forbid" for strict validation. Scheduling keys accept the
camelCase names used by operators (``discoveryIntervalHours`` and friends).
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, ClassVar, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# ============================================================================
# Storage
# ============================================================================


class CatalogConfig(BaseModel):
    """Catalog database configuration."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    path: str = Field(default="data/camera-vault.db", description="SQLite database file")
    wal_mode: bool = Field(default=True, description="Enable WAL mode for SQLite")
    write_attempts: int = Field(
        default=3, ge=1, description="Attempts per upsert before the write is reported lost"
    )
    backup_dir: str = Field(default="data/backups", description="Snapshot directory")
    soft_locks: bool = Field(
        default=False, description="Use soft job lock files where flock is unavailable"
    )


class AssetConfig(BaseModel):
    """Image cache layout and acquisition policy."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    root: str = Field(default="public", description="Asset root directory")
    images_subdir: str = Field(default="images", description="Full-size image directory")
    thumbs_subdir: str = Field(default="thumbs", description="Thumbnail directory under images")
    attributions_subdir: str = Field(
        default="attributions", description="Attribution report directory"
    )
    image_size: tuple[int, int] = Field(default=(1200, 900), description="Max full image size")
    thumbnail_size: tuple[int, int] = Field(default=(400, 300), description="Thumbnail size")
    image_quality: int = Field(default=90, ge=1, le=100)
    thumbnail_quality: int = Field(default=85, ge=1, le=100)
    max_image_bytes: int = Field(
        default=10 * 1024 * 1024, description="Reject images larger than this"
    )
    allowed_licenses: List[str] = Field(
        default_factory=lambda: [
            "Fair Use",
            "Press/Fair Use",
            "CC0",
            "CC BY",
            "CC BY-SA",
            "Public Domain",
        ],
        description="Licences accepted for cached images (case-insensitive)",
    )
    enrichment_batch_size: int = Field(
        default=50, ge=1, description="Missing-image rows scanned per cycle"
    )

    @field_validator("max_image_bytes")
    @classmethod
    def validate_max_bytes(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max_image_bytes must be > 0")
        return v


# ============================================================================
# Network
# ============================================================================


class HttpClientConfig(BaseModel):
    """HTTP client configuration."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    user_agent: str = Field(
        default="Mozilla/5.0 (compatible; CameraVaultBot/1.0; +https://cameravault.com/bot)",
        description="User-Agent sent with every request",
    )
    timeout_connect_s: float = Field(default=10.0, description="Connect timeout in seconds")
    timeout_read_s: float = Field(default=30.0, description="Read timeout in seconds")
    verify_tls: bool = Field(default=True, description="Verify TLS certificates")

    @field_validator("timeout_connect_s", "timeout_read_s")
    @classmethod
    def validate_timeouts(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Timeouts must be > 0")
        return v


class RetryPolicy(BaseModel):
    """Configuration for fetch retry behaviour."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    retry_statuses: List[int] = Field(
        default=[429, 500, 502, 503, 504],
        description="HTTP status codes that trigger retry",
    )
    max_attempts: int = Field(default=3, description="Maximum attempts per request")
    base_delay_s: float = Field(default=1.0, description="Exponential backoff multiplier")
    max_delay_s: float = Field(default=30.0, description="Maximum backoff delay")
    retry_after_cap_s: float = Field(default=60.0, description="Cap applied to Retry-After")

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_attempts must be >= 1")
        return v

    @field_validator("base_delay_s", "max_delay_s", "retry_after_cap_s")
    @classmethod
    def validate_delays(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Delay values must be >= 0")
        return v


class RateLimitPolicy(BaseModel):
    """Minimum spacing between requests to the same host."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    min_interval_ms: int = Field(default=2000, ge=0, description="Minimum inter-request delay")
    max_wait_ms: int = Field(
        default=120_000, ge=0, description="Longest a caller may block waiting for a slot"
    )


# ============================================================================
# Scheduling
# ============================================================================


class SchedulingConfig(BaseModel):
    """Recurring job configuration."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", populate_by_name=True)

    discovery_interval_hours: float = Field(default=6, alias="discoveryIntervalHours", gt=0)
    backup_time_of_day: str = Field(default="03:00", alias="backupTimeOfDay")
    run_discovery_on_start: bool = Field(default=True, alias="runDiscoveryOnStart")
    backup_retention_count: int = Field(default=5, alias="backupRetentionCount", ge=1)
    max_concurrent_asset_fetches: int = Field(
        default=4, alias="maxConcurrentAssetFetches", ge=1, le=32
    )
    fetch_retry_limit: Optional[int] = Field(default=None, alias="fetchRetryLimit", ge=1)
    shutdown_grace_seconds: float = Field(default=30.0, alias="shutdownGraceSeconds", ge=0)

    @field_validator("backup_time_of_day")
    @classmethod
    def validate_time_of_day(cls, v: str) -> str:
        parts = v.split(":")
        if len(parts) != 2 or not all(p.isdigit() for p in parts):
            raise ValueError("backupTimeOfDay must be HH:MM")
        hour, minute = int(parts[0]), int(parts[1])
        if not (0 <= hour < 24 and 0 <= minute < 60):
            raise ValueError("backupTimeOfDay must be a valid 24h time")
        return f"{hour:02d}:{minute:02d}"


class MonitorConfig(BaseModel):
    """Monitor reporting configuration."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    enabled: bool = Field(default=True)
    interval_seconds: float = Field(default=30.0, gt=0)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")
    log_dir: Optional[str] = Field(default="data/logs", description="JSONL log directory")
    max_log_size_mb: int = Field(default=50, ge=1)
    backup_count: int = Field(default=5, ge=0)


# ============================================================================
# Sources
# ============================================================================


class SourceConfig(BaseModel):
    """A known external source of camera records."""

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid")

    name: str = Field(description="Unique source name")
    kind: Literal["json", "static"] = Field(default="json")
    url: Optional[str] = Field(default=None, description="Endpoint for json sources")
    records_path: Optional[str] = Field(
        default=None, description="Dotted key holding the record array in an object payload"
    )
    page_param: Optional[str] = Field(default=None, description="Query parameter for paging")
    max_pages: int = Field(default=1, ge=1)
    mapping: str = Field(default="default", description="Name of the field mapping table")
    trust: Literal["verified", "rumor"] = Field(default="verified")
    enabled: bool = Field(default=True)
    records: List[Dict[str, Any]] = Field(
        default_factory=list, description="Inline records for static sources"
    )

    @model_validator(mode="after")
    def validate_kind(self) -> "SourceConfig":
        if self.kind == "json" and not self.url:
            raise ValueError(f"source '{self.name}': json sources require a url")
        return self


# ============================================================================
# Top-Level Configuration
# ============================================================================


class CatalogSyncConfig(BaseModel):
    """
    Single source of truth for CatalogSync configuration.

    Loaded from file (YAML/JSON), overlaid with environment variables,
    and finally overridden by CLI arguments. Precedence: file < env < CLI.
    """

    model_config: ClassVar[ConfigDict] = ConfigDict(extra="forbid", validate_assignment=True)

    catalog: CatalogConfig = Field(default_factory=CatalogConfig)
    assets: AssetConfig = Field(default_factory=AssetConfig)
    http: HttpClientConfig = Field(default_factory=HttpClientConfig)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)
    ratelimit: RateLimitPolicy = Field(default_factory=RateLimitPolicy)
    scheduling: SchedulingConfig = Field(default_factory=SchedulingConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    sources: List[SourceConfig] = Field(default_factory=list)
    batch_size: int = Field(default=25, ge=1, description="Records per fetch/normalize chunk")

    @field_validator("sources")
    @classmethod
    def validate_unique_sources(cls, v: List[SourceConfig]) -> List[SourceConfig]:
        names = [s.name for s in v]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"Duplicate source names: {sorted(duplicates)}")
        return v

    def effective_retry(self) -> RetryPolicy:
        """Return the retry policy with ``fetchRetryLimit`` applied."""
        limit = self.scheduling.fetch_retry_limit
        if limit is None:
            return self.retry
        return self.retry.model_copy(update={"max_attempts": limit})

    def config_hash(self) -> str:
        """
        Compute deterministic SHA256 hash of config for reproducibility.

        Returns:
            Hex-encoded SHA256 hash of normalized config JSON.
        """
        normalized = json.dumps(self.model_dump(mode="json"), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(normalized.encode()).hexdigest()
