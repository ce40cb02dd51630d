# === NAVMAP v1 ===
# {
#   "module": "CameraVault.CatalogSync.errors",
#   "purpose": "Failure taxonomy for catalog ingestion, enrichment, and backup jobs.",
#   "sections": [
#     {"id": "catalogsyncerror", "name": "CatalogSyncError", "anchor": "class-catalogsyncerror", "kind": "class"},
#     {"id": "sourceunavailable", "name": "SourceUnavailable", "anchor": "class-sourceunavailable", "kind": "class"},
#     {"id": "malformedpayload", "name": "MalformedPayload", "anchor": "class-malformedpayload", "kind": "class"},
#     {"id": "assetacquisitionfailed", "name": "AssetAcquisitionFailed", "anchor": "class-assetacquisitionfailed", "kind": "class"},
#     {"id": "storewritefailed", "name": "StoreWriteFailed", "anchor": "class-storewritefailed", "kind": "class"},
#     {"id": "backupfailed", "name": "BackupFailed", "anchor": "class-backupfailed", "kind": "class"},
#     {"id": "catalogunavailable", "name": "CatalogUnavailable", "anchor": "class-catalogunavailable", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Exception hierarchy shared by the catalog synchronisation engine.

Responsibilities
----------------
- Group failure modes by the smallest unit they affect so callers can isolate
  them: one source (:class:`SourceUnavailable`, :class:`MalformedPayload`),
  one asset (:class:`AssetAcquisitionFailed`), one record
  (:class:`StoreWriteFailed`) or one snapshot (:class:`BackupFailed`).
- Mark the single fatal condition, :class:`CatalogUnavailable`, raised when the
  catalog store cannot be opened or fails its integrity check at startup.

Design Notes
------------
- Records rejected by the normaliser are not exceptions; they are reported as
  :class:`~CameraVault.CatalogSync.normalizer.SkippedRecord` values.
"""

from __future__ import annotations

from typing import Any, Optional

__all__ = [
    "CatalogSyncError",
    "ConfigError",
    "SourceUnavailable",
    "MalformedPayload",
    "AssetAcquisitionFailed",
    "StoreWriteFailed",
    "BackupFailed",
    "CatalogUnavailable",
]


class CatalogSyncError(RuntimeError):
    """Base exception for catalog synchronisation failures."""


class ConfigError(CatalogSyncError):
    """Raised when configuration files or overrides are invalid."""


class SourceUnavailable(CatalogSyncError):
    """Raised when a source cannot be reached after all retries."""

    def __init__(
        self,
        message: str,
        *,
        source: Optional[str] = None,
        url: Optional[str] = None,
        status: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.source = source
        self.url = url
        self.status = status


class MalformedPayload(CatalogSyncError):
    """Raised when a source response cannot be parsed into raw records."""

    def __init__(self, message: str, *, source: Optional[str] = None, url: Optional[str] = None):
        super().__init__(message)
        self.source = source
        self.url = url


class AssetAcquisitionFailed(CatalogSyncError):
    """Raised when an image cannot be downloaded, licensed, or decoded."""

    def __init__(self, message: str, *, camera_id: str, reason: str = "error") -> None:
        super().__init__(message)
        self.camera_id = camera_id
        self.reason = reason


class StoreWriteFailed(CatalogSyncError):
    """Raised when a catalog transaction still fails after bounded retries."""

    def __init__(self, message: str, *, camera_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.camera_id = camera_id


class BackupFailed(CatalogSyncError):
    """Raised when a catalog snapshot cannot be written."""

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.details = details or {}


class CatalogUnavailable(CatalogSyncError):
    """Raised when the catalog store is unreachable or corrupted at startup."""

    def __init__(self, message: str, *, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path
