"""Tests for catalog snapshots and retention."""

from __future__ import annotations

import itertools
import json
import sqlite3
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from CameraVault.CatalogSync.catalog.backup import BackupJob
from CameraVault.CatalogSync.catalog.models import CameraRecord
from CameraVault.CatalogSync.errors import BackupFailed


def _ticking_clock(start: datetime, step: timedelta = timedelta(minutes=1)):
    counter = itertools.count()
    return lambda: start + step * next(counter)


@pytest.fixture
def populated(catalog):
    for brand, model in (("Canon", "AE-1"), ("Nikon", "F3"), ("Leica", "M6")):
        catalog.upsert(
            CameraRecord(id=f"{brand}-{model}".lower(), brand=brand, model=model, full_name=f"{brand} {model}")
        )
    return catalog


def test_snapshot_is_a_consistent_copy(populated, tmp_path):
    job = BackupJob(populated, tmp_path / "backups")

    metadata = job.run()

    snapshot = Path(metadata.destination_path)
    assert snapshot.name.startswith("camera-vault-")
    assert snapshot.suffix == ".sqlite"
    assert metadata.record_count == 3
    assert metadata.file_size_bytes == snapshot.stat().st_size
    assert len(metadata.checksum_sha256) == 64

    conn = sqlite3.connect(str(snapshot))
    try:
        assert conn.execute("SELECT COUNT(*) FROM cameras").fetchone()[0] == 3
    finally:
        conn.close()

    sidecar = json.loads(snapshot.with_suffix(".metadata.json").read_text())
    assert sidecar["record_count"] == 3


def test_retention_keeps_newest_five(populated, tmp_path):
    start = datetime(2024, 6, 1, 3, 0, tzinfo=timezone.utc)
    job = BackupJob(populated, tmp_path / "backups", retention_count=5, clock=_ticking_clock(start))

    written = [job.run().destination_path for _ in range(7)]

    remaining = [str(p) for p in job.snapshot_paths()]
    assert len(remaining) == 5
    assert remaining == list(reversed(written[2:]))
    assert len(list((tmp_path / "backups").glob("*.metadata.json"))) == 5


def test_same_timestamp_does_not_overwrite(populated, tmp_path):
    frozen = datetime(2024, 6, 1, 3, 0, tzinfo=timezone.utc)
    job = BackupJob(populated, tmp_path / "backups", clock=lambda: frozen)

    first = job.run()
    second = job.run()

    assert first.destination_path != second.destination_path
    assert len(job.snapshot_paths()) == 2


def test_list_snapshots_tolerates_missing_metadata(populated, tmp_path):
    job = BackupJob(populated, tmp_path / "backups")
    metadata = job.run()
    (tmp_path / "backups" / "camera-vault-20000101T000000000000Z.sqlite").write_bytes(b"")

    listed = job.list_snapshots()

    assert listed[0][1] == metadata
    assert listed[-1][1] is None


def test_failed_snapshot_leaves_no_partial_files(populated, tmp_path, monkeypatch):
    job = BackupJob(populated, tmp_path / "backups")

    def _broken(destination):
        destination.write_bytes(b"partial")
        raise sqlite3.OperationalError("disk I/O error")

    monkeypatch.setattr(populated, "snapshot_to", _broken)

    with pytest.raises(BackupFailed):
        job.run()
    assert list((tmp_path / "backups").iterdir()) == []


def test_invalid_retention():
    with pytest.raises(ValueError):
        BackupJob(None, "unused", retention_count=0)
