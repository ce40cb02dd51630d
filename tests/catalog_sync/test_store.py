"""Tests for the SQLite catalog store.

Covers insert-or-merge semantics, image attachment, retry bookkeeping,
aggregate statistics and the startup integrity check.
"""

from __future__ import annotations

import sqlite3
import threading
from datetime import date, datetime, timedelta, timezone

import pytest

from CameraVault.CatalogSync.catalog.models import (
    CameraRecord,
    CameraStatus,
    CatalogStats,
    ImageAttribution,
    SyncRunRecord,
    UpsertOutcome,
)
from CameraVault.CatalogSync.catalog.store import SQLiteCatalog, open_catalog
from CameraVault.CatalogSync.errors import CatalogUnavailable, StoreWriteFailed


def _record(**overrides) -> CameraRecord:
    fields = {
        "id": "canon-eos-r5-2020",
        "brand": "Canon",
        "model": "EOS R5",
        "full_name": "Canon EOS R5",
        "release_year": 2020,
    }
    fields.update(overrides)
    return CameraRecord(**fields)


class TestUpsert:
    """Insert-or-merge behaviour."""

    def test_first_upsert_creates(self, catalog):
        assert catalog.upsert(_record()) is UpsertOutcome.CREATED
        stored = catalog.lookup("canon-eos-r5-2020")
        assert stored is not None
        assert stored.full_name == "Canon EOS R5"
        assert stored.status is CameraStatus.VERIFIED
        assert stored.last_updated is not None

    def test_second_upsert_updates_without_duplicating(self, catalog):
        catalog.upsert(_record())
        assert catalog.upsert(_record(msrp=3899.0)) is UpsertOutcome.UPDATED
        assert catalog.count() == 1
        assert catalog.lookup("canon-eos-r5-2020").msrp == 3899.0

    def test_null_fields_do_not_overwrite(self, catalog):
        catalog.upsert(_record(msrp=3899.0, sensor="45MP Full Frame", specs={"iso": "100-51200"}))
        catalog.upsert(_record(category="mirrorless"))

        stored = catalog.lookup("canon-eos-r5-2020")
        assert stored.msrp == 3899.0
        assert stored.sensor == "45MP Full Frame"
        assert stored.specs == {"iso": "100-51200"}
        assert stored.category == "mirrorless"

    def test_enriched_fields_survive_resync(self, catalog):
        catalog.upsert(_record(image_url="https://img.example.com/r5.jpg"))
        catalog.attach_image(
            "canon-eos-r5-2020",
            image_url="https://img.example.com/r5.jpg",
            local_path="images/canon-eos-r5-2020.jpg",
            thumbnail_path="images/thumbs/canon-eos-r5-2020-thumb.jpg",
            attribution=ImageAttribution(source="Canon USA", license="Press/Fair Use"),
        )

        catalog.upsert(_record(description="Flagship hybrid"))

        stored = catalog.lookup("canon-eos-r5-2020")
        assert stored.local_image_path == "images/canon-eos-r5-2020.jpg"
        assert stored.thumbnail_path == "images/thumbs/canon-eos-r5-2020-thumb.jpg"
        assert stored.image_attribution.source == "Canon USA"
        assert stored.description == "Flagship hybrid"

    def test_last_updated_never_moves_backwards(self, catalog):
        catalog.upsert(_record())
        first = catalog.lookup("canon-eos-r5-2020").last_updated
        catalog.upsert(_record(msrp=1.0))
        second = catalog.lookup("canon-eos-r5-2020").last_updated
        assert second >= first

    def test_json_fields_round_trip(self, catalog):
        catalog.upsert(_record(key_features=["8K RAW", "IBIS"], specs={"megapixels": 45.0}))
        stored = catalog.lookup("canon-eos-r5-2020")
        assert stored.key_features == ["8K RAW", "IBIS"]
        assert stored.specs == {"megapixels": 45.0}

    def test_non_json_values_are_stored_as_text(self, catalog):
        catalog.upsert(_record(specs={"announced": date(2020, 7, 9)}))
        assert catalog.lookup("canon-eos-r5-2020").specs == {"announced": "2020-07-09"}

    def test_transient_lock_is_retried(self, catalog, monkeypatch):
        original = catalog._upsert_once
        calls = []

        def flaky(record):
            calls.append(record.id)
            if len(calls) == 1:
                raise sqlite3.OperationalError("database is locked")
            return original(record)

        monkeypatch.setattr(catalog, "_upsert_once", flaky)

        assert catalog.upsert(_record()) is UpsertOutcome.CREATED
        assert len(calls) == 2
        assert catalog.count() == 1

    def test_persistent_lock_raises_store_write_failed(self, catalog, monkeypatch):
        calls = []

        def locked(record):
            calls.append(record.id)
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(catalog, "_upsert_once", locked)

        with pytest.raises(StoreWriteFailed) as excinfo:
            catalog.upsert(_record())
        assert excinfo.value.camera_id == "canon-eos-r5-2020"
        assert len(calls) == catalog.write_attempts

    def test_concurrent_upserts_single_row(self, catalog):
        errors = []

        def _worker(price: float) -> None:
            try:
                catalog.upsert(_record(msrp=price))
            except Exception as e:  # pragma: no cover - surfaced below
                errors.append(e)

        threads = [threading.Thread(target=_worker, args=(float(i),)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert not errors
        assert catalog.count() == 1

    def test_lookup_unknown_returns_none(self, catalog):
        assert catalog.lookup("nope") is None


class TestImages:
    """Attribution and retry bookkeeping."""

    def test_scan_missing_images_orders_by_attempts(self, catalog):
        catalog.upsert(_record(id="a-1", brand="A", model="1"))
        catalog.upsert(_record(id="b-2", brand="B", model="2"))
        catalog.record_image_failure("a-1", "http-404: gone")

        missing = [r.id for r in catalog.scan_missing_images(limit=10)]
        assert missing == ["b-2", "a-1"]

    def test_scan_missing_images_respects_limit(self, catalog):
        for i in range(5):
            catalog.upsert(_record(id=f"cam-{i}", model=f"M{i}"))
        assert len(catalog.scan_missing_images(limit=2)) == 2

    def test_record_image_failure_increments(self, catalog):
        catalog.upsert(_record())
        catalog.record_image_failure("canon-eos-r5-2020", "network: boom")
        attempt = catalog.record_image_failure("canon-eos-r5-2020", "http-404: gone")
        assert attempt.attempts == 2
        assert attempt.last_error == "http-404: gone"

    def test_attach_image_records_attribution_and_clears_attempts(self, catalog):
        catalog.upsert(_record())
        catalog.record_image_failure("canon-eos-r5-2020", "network: boom")

        row = catalog.attach_image(
            "canon-eos-r5-2020",
            image_url="https://img.example.com/r5.jpg",
            local_path="images/canon-eos-r5-2020.jpg",
            thumbnail_path="images/thumbs/canon-eos-r5-2020-thumb.jpg",
            attribution=ImageAttribution(source="Canon USA"),
        )

        assert row.attribution_text == "Image courtesy of Canon USA"
        assert row.license == "Fair Use"
        assert catalog.image_attempts("canon-eos-r5-2020") is None
        assert [a.id for a in catalog.attributions_for("canon-eos-r5-2020")] == [row.id]
        assert catalog.scan_missing_images() == []

    def test_attach_image_unknown_camera_raises(self, catalog):
        with pytest.raises(StoreWriteFailed):
            catalog.attach_image(
                "missing",
                image_url=None,
                local_path="images/missing.jpg",
                thumbnail_path=None,
                attribution=ImageAttribution(),
            )
        assert catalog.all_attributions() == []


class TestStats:
    def test_empty_catalog_has_zero_coverage(self, catalog):
        stats = catalog.aggregate_stats()
        assert stats.total == 0
        assert stats.coverage_percent == 0
        assert stats.as_dict() == {
            "total": 0,
            "verified": 0,
            "rumors": 0,
            "withImages": 0,
            "coveragePercent": 0,
        }

    def test_counts_by_status_and_coverage(self, catalog):
        catalog.upsert(_record(id="a", model="A"))
        catalog.upsert(_record(id="b", model="B"))
        catalog.upsert(_record(id="c", model="C", status=CameraStatus.RUMOR))
        catalog.attach_image(
            "a",
            image_url=None,
            local_path="images/a.jpg",
            thumbnail_path=None,
            attribution=ImageAttribution(),
        )

        stats = catalog.aggregate_stats()
        assert (stats.total, stats.verified, stats.rumors, stats.with_images) == (3, 2, 1, 1)
        assert stats.coverage_percent == 33

    @pytest.mark.parametrize(
        "with_images, expected", [(1, 13), (3, 38), (5, 63), (8, 100), (0, 0)]
    )
    def test_coverage_rounds_half_up(self, with_images, expected):
        stats = CatalogStats(total=8, verified=8, rumors=0, with_images=with_images)
        assert stats.coverage_percent == expected


class TestSyncRuns:
    def test_recent_runs_newest_first(self, catalog):
        base = datetime(2024, 5, 1, tzinfo=timezone.utc)
        for i in range(3):
            catalog.record_sync_run(
                SyncRunRecord(
                    run_id=f"run-{i}",
                    started_at=base + timedelta(hours=i),
                    finished_at=base + timedelta(hours=i, minutes=1),
                    status="ok",
                    counts={"created": i},
                    failed_sources=["broken"] if i == 2 else [],
                )
            )

        runs = catalog.recent_runs(limit=2)
        assert [r.run_id for r in runs] == ["run-2", "run-1"]
        assert runs[0].failed_sources == ["broken"]
        assert runs[1].counts == {"created": 1}


class TestOpenCatalog:
    def test_open_catalog_creates_schema(self, tmp_path):
        with open_catalog(str(tmp_path / "nested" / "vault.db"), wal_mode=True) as store:
            assert isinstance(store, SQLiteCatalog)
            assert store.integrity_check() == "ok"
            assert store.count() == 0

    def test_corrupted_file_is_unavailable(self, tmp_path):
        path = tmp_path / "vault.db"
        path.write_bytes(b"this is definitely not a sqlite database " * 200)

        with pytest.raises(CatalogUnavailable) as excinfo:
            open_catalog(str(path))
        assert excinfo.value.path == str(path)
