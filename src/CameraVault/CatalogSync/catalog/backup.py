"""Catalog snapshot and retention job.

Provides:
  - Consistent snapshots through the SQLite online backup API
  - A ``.metadata.json`` sidecar per snapshot (size, record count, checksum)
  - Count-based retention (newest snapshots kept)
"""

from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from CameraVault.CatalogSync.catalog.store import SQLiteCatalog
from CameraVault.CatalogSync.errors import BackupFailed
from CameraVault.CatalogSync.logging_utils import emit_event, generate_cycle_id

logger = logging.getLogger(__name__)

SNAPSHOT_PREFIX = "camera-vault-"
SNAPSHOT_SUFFIX = ".sqlite"
METADATA_SUFFIX = ".metadata.json"
_STAMP_FORMAT = "%Y%m%dT%H%M%S%fZ"


@dataclass(frozen=True)
class BackupMetadata:
    """Metadata for a snapshot."""

    timestamp: str  # ISO format
    source_path: str
    destination_path: str
    file_size_bytes: int
    record_count: int
    checksum_sha256: Optional[str] = None


def _compute_checksum(file_path: Path) -> str:
    sha256 = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def _metadata_path(snapshot: Path) -> Path:
    return snapshot.with_suffix(METADATA_SUFFIX)


class BackupJob:
    """Write timestamped catalog snapshots and prune old ones.

    Snapshot names embed a UTC timestamp with microseconds, so lexical order
    equals creation order.
    """

    name = "backup"

    def __init__(
        self,
        store: SQLiteCatalog,
        backup_dir: Path,
        retention_count: int = 5,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if retention_count < 1:
            raise ValueError("retention_count must be >= 1")
        self.store = store
        self.backup_dir = Path(backup_dir)
        self.retention_count = retention_count
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _next_snapshot_path(self) -> Tuple[datetime, Path]:
        stamp = self._clock()
        while True:
            path = self.backup_dir / f"{SNAPSHOT_PREFIX}{stamp.strftime(_STAMP_FORMAT)}{SNAPSHOT_SUFFIX}"
            if not path.exists():
                return stamp, path
            stamp += timedelta(microseconds=1)

    def run(self, token=None) -> BackupMetadata:
        """Create one snapshot, then apply retention.

        Raises:
            BackupFailed: If the snapshot cannot be written or verified. Any
                partial artifacts are removed first.
        """
        cycle_id = generate_cycle_id()
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        stamp, snapshot_path = self._next_snapshot_path()
        metadata_path = _metadata_path(snapshot_path)

        emit_event(logger, self.name, cycle_id, "backup.started", destination=str(snapshot_path))

        try:
            self.store.snapshot_to(snapshot_path)
            record_count = self._verify_snapshot(snapshot_path)
            metadata = BackupMetadata(
                timestamp=stamp.isoformat(),
                source_path=str(self.store.path),
                destination_path=str(snapshot_path),
                file_size_bytes=snapshot_path.stat().st_size,
                record_count=record_count,
                checksum_sha256=_compute_checksum(snapshot_path),
            )
            with open(metadata_path, "w") as f:
                json.dump(asdict(metadata), f, indent=2)
        except (sqlite3.Error, OSError) as e:
            for partial in (snapshot_path, metadata_path):
                if partial.exists():
                    partial.unlink()
            emit_event(
                logger, self.name, cycle_id, "backup.failed", level=logging.ERROR, error=str(e)
            )
            raise BackupFailed(
                f"Snapshot to {snapshot_path} failed: {e}",
                details={"destination": str(snapshot_path)},
            ) from e

        pruned = self.apply_retention()
        emit_event(
            logger,
            self.name,
            cycle_id,
            "backup.completed",
            destination=str(snapshot_path),
            records=metadata.record_count,
            size_bytes=metadata.file_size_bytes,
            pruned=len(pruned),
        )
        return metadata

    @staticmethod
    def _verify_snapshot(snapshot_path: Path) -> int:
        conn = sqlite3.connect(str(snapshot_path))
        try:
            verdict = conn.execute("PRAGMA quick_check").fetchone()[0]
            if verdict != "ok":
                raise sqlite3.DatabaseError(f"snapshot integrity check returned {verdict}")
            return conn.execute("SELECT COUNT(*) FROM cameras").fetchone()[0]
        finally:
            conn.close()

    def snapshot_paths(self) -> List[Path]:
        """Snapshot files, newest first."""
        if not self.backup_dir.exists():
            return []
        return sorted(
            self.backup_dir.glob(f"{SNAPSHOT_PREFIX}*{SNAPSHOT_SUFFIX}"),
            key=lambda p: p.name,
            reverse=True,
        )

    def list_snapshots(self) -> List[Tuple[Path, Optional[BackupMetadata]]]:
        """List snapshots newest first with their metadata, when readable."""
        snapshots = []
        for snapshot in self.snapshot_paths():
            metadata = None
            sidecar = _metadata_path(snapshot)
            if sidecar.exists():
                try:
                    with open(sidecar) as f:
                        metadata = BackupMetadata(**json.load(f))
                except (OSError, ValueError, TypeError) as e:
                    logger.warning(f"Could not load metadata for {snapshot}: {e}")
            snapshots.append((snapshot, metadata))
        return snapshots

    def apply_retention(self) -> List[Path]:
        """Delete snapshots beyond ``retention_count``; returns removed paths."""
        removed = []
        for stale in self.snapshot_paths()[self.retention_count :]:
            try:
                stale.unlink()
                sidecar = _metadata_path(stale)
                if sidecar.exists():
                    sidecar.unlink()
                removed.append(stale)
                logger.info(f"Removed expired snapshot {stale.name}")
            except OSError as e:
                logger.warning(f"Could not remove snapshot {stale}: {e}")
        return removed
