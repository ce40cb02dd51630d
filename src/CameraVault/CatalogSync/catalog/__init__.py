# === NAVMAP v1 ===
# {
#   "module": "CameraVault.CatalogSync.catalog.__init__",
#   "purpose": "Persisted camera catalog and its snapshot job.",
#   "sections": []
# }
# === /NAVMAP ===

"""
Camera Catalog Storage for CatalogSync.

Provides the persisted SQLite catalog that every job reads from and writes to:
  - Canonical camera rows keyed by a deterministic dedup id
  - Image attribution and acquisition-attempt bookkeeping
  - Per-cycle sync run history
  - Online snapshots with count-based retention
"""

from __future__ import annotations

from CameraVault.CatalogSync.catalog.models import (
    AttributionRecord,
    CameraRecord,
    CameraStatus,
    CatalogStats,
    ImageAttempt,
    ImageAttribution,
    SyncRunRecord,
    UpsertOutcome,
)
from CameraVault.CatalogSync.catalog.store import CatalogStore, SQLiteCatalog, open_catalog

__all__ = [
    "AttributionRecord",
    "CameraRecord",
    "CameraStatus",
    "CatalogStats",
    "CatalogStore",
    "ImageAttempt",
    "ImageAttribution",
    "SQLiteCatalog",
    "SyncRunRecord",
    "UpsertOutcome",
    "open_catalog",
]
