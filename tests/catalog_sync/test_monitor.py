"""Tests for the read-only catalog monitor."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from CameraVault.CatalogSync.catalog.models import CameraRecord, SyncRunRecord
from CameraVault.CatalogSync.logging_utils import emit_event
from CameraVault.CatalogSync.monitor import Monitor


def test_snapshot_of_empty_catalog(catalog, event_stream):
    monitor = Monitor(catalog, event_stream=event_stream)
    snapshot = monitor.snapshot()

    assert snapshot.stats.total == 0
    assert snapshot.last_cycle is None
    payload = snapshot.as_dict()
    assert payload["coveragePercent"] == 0
    assert payload["lastCycle"] is None
    assert "takenAt" in payload


def test_last_cycle_falls_back_to_sync_runs(catalog, event_stream):
    catalog.record_sync_run(
        SyncRunRecord(
            run_id="abc123",
            started_at=datetime(2024, 6, 1, tzinfo=timezone.utc),
            finished_at=datetime(2024, 6, 1, 0, 1, tzinfo=timezone.utc),
            status="partial",
            counts={"created": 4},
            failed_sources=["rumors"],
        )
    )
    monitor = Monitor(catalog, event_stream=event_stream)

    last = monitor.last_cycle()

    assert last["cycle_id"] == "abc123"
    assert last["status"] == "partial"
    assert last["created"] == 4
    assert last["failed_sources"] == ["rumors"]


def test_sync_events_update_last_cycle(catalog, event_stream):
    monitor = Monitor(catalog, event_stream=event_stream)
    emit_event(
        logging.getLogger("test"),
        "sync",
        "cycle-1",
        "sync.completed",
        stream=event_stream,
        status="ok",
        created=2,
    )

    assert monitor.last_cycle() == {"cycle_id": "cycle-1", "status": "ok", "created": 2}

    monitor.close()
    emit_event(logging.getLogger("test"), "sync", "cycle-2", "sync.completed", stream=event_stream)
    assert monitor.last_cycle()["cycle_id"] == "cycle-1"


def test_report_publishes_stats_without_writing(catalog, event_stream):
    catalog.upsert(CameraRecord(id="leica-m6", brand="Leica", model="M6", full_name="Leica M6"))
    monitor = Monitor(catalog, event_stream=event_stream)
    before = catalog.lookup("leica-m6").last_updated

    snapshot = monitor.report()

    (event,) = event_stream.recent("monitor")
    assert event.event == "catalog.stats"
    assert event.fields["total"] == 1
    assert event.fields["coveragePercent"] == 0
    assert snapshot.stats.total == 1
    assert catalog.lookup("leica-m6").last_updated == before
