"""Data models for the camera catalog."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class CameraStatus(str, Enum):
    """Trust level of a catalog entry, taken from the source that reported it."""

    VERIFIED = "verified"
    RUMOR = "rumor"


class UpsertOutcome(str, Enum):
    """Whether an upsert inserted a new row or merged into an existing one."""

    CREATED = "created"
    UPDATED = "updated"


@dataclass
class ImageAttribution:
    """Provenance supplied by a source for a camera image."""

    source: str = "Unknown"
    author: str = "Unknown"
    license: str = "Fair Use"
    text: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Optional[Dict[str, Any]]) -> Optional["ImageAttribution"]:
        if not data:
            return None
        return cls(
            source=str(data.get("source") or "Unknown"),
            author=str(data.get("author") or "Unknown"),
            license=str(data.get("license") or "Fair Use"),
            text=data.get("text") or data.get("attributionText"),
        )

    def attribution_text(self) -> str:
        return self.text or f"Image courtesy of {self.source}"

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CameraRecord:
    """Canonical catalog entry for one logical camera.

    Fields left as ``None`` are treated as "not supplied" by
    :meth:`~CameraVault.CatalogSync.catalog.store.SQLiteCatalog.upsert` and never
    overwrite stored values.
    """

    id: str
    brand: str
    model: str
    full_name: str
    status: CameraStatus = CameraStatus.VERIFIED
    category: Optional[str] = None
    release_year: Optional[int] = None
    msrp: Optional[float] = None
    current_price: Optional[float] = None
    sensor: Optional[str] = None
    processor: Optional[str] = None
    mount: Optional[str] = None
    manual_url: Optional[str] = None
    description: Optional[str] = None
    key_features: Optional[List[str]] = None
    specs: Optional[Dict[str, Any]] = None
    image_url: Optional[str] = None
    image_attribution: Optional[ImageAttribution] = None
    local_image_path: Optional[str] = None
    thumbnail_path: Optional[str] = None
    last_updated: Optional[datetime] = None

    def supplied_fields(self) -> Dict[str, Any]:
        """Return the non-null fields, excluding the key and timestamp."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if f.name not in ("id", "last_updated") and getattr(self, f.name) is not None
        }


@dataclass(frozen=True)
class AttributionRecord:
    """Stored provenance row for a cached image."""

    id: int
    camera_id: str
    image_url: Optional[str]
    local_path: str
    source: Optional[str]
    author: Optional[str]
    license: Optional[str]
    attribution_text: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class ImageAttempt:
    """Retry bookkeeping for image acquisitions that have failed."""

    camera_id: str
    attempts: int
    last_attempt_at: datetime
    last_error: Optional[str]


@dataclass(frozen=True)
class CatalogStats:
    """Aggregate counts consumed by operators and the serving layer."""

    total: int
    verified: int
    rumors: int
    with_images: int

    @property
    def coverage_percent(self) -> int:
        if not self.total:
            return 0
        # half-up, so 1 of 8 reports 13
        return int(self.with_images * 100 / self.total + 0.5)

    def as_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "verified": self.verified,
            "rumors": self.rumors,
            "withImages": self.with_images,
            "coveragePercent": self.coverage_percent,
        }


@dataclass(frozen=True)
class SyncRunRecord:
    """Persisted outcome of one discovery cycle."""

    run_id: str
    started_at: datetime
    finished_at: Optional[datetime]
    status: str
    counts: Dict[str, int] = field(default_factory=dict)
    failed_sources: List[str] = field(default_factory=list)
