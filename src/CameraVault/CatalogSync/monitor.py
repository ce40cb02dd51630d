"""Read-only catalog monitor.

The monitor periodically reports catalog counts and image coverage, together
with the outcome of the latest discovery cycle. It learns about cycles by
subscribing to the job event stream; before the first cycle of this process it
falls back to the most recent row in ``sync_runs``.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from CameraVault.CatalogSync.cancellation import CancellationToken
from CameraVault.CatalogSync.catalog.models import CatalogStats
from CameraVault.CatalogSync.catalog.store import SQLiteCatalog
from CameraVault.CatalogSync.logging_utils import (
    EventStream,
    JobEvent,
    emit_event,
    generate_cycle_id,
    get_event_stream,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MonitorSnapshot:
    stats: CatalogStats
    last_cycle: Optional[Dict[str, Any]] = None
    taken_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> Dict[str, Any]:
        return {
            **self.stats.as_dict(),
            "lastCycle": self.last_cycle,
            "takenAt": self.taken_at.isoformat(),
        }


class Monitor:
    """Report catalog statistics without ever writing to the catalog."""

    name = "monitor"

    def __init__(self, store: SQLiteCatalog, *, event_stream: Optional[EventStream] = None):
        self.store = store
        self.event_stream = event_stream or get_event_stream()
        self._lock = threading.Lock()
        self._last_cycle: Optional[Dict[str, Any]] = None
        self._unsubscribe = self.event_stream.subscribe(self._on_event)

    def _on_event(self, event: JobEvent) -> None:
        if event.job == "sync" and event.event == "sync.completed":
            with self._lock:
                self._last_cycle = {"cycle_id": event.cycle_id, **event.fields}

    def last_cycle(self) -> Optional[Dict[str, Any]]:
        with self._lock:
            if self._last_cycle is not None:
                return dict(self._last_cycle)
        runs = self.store.recent_runs(limit=1)
        if not runs:
            return None
        run = runs[0]
        return {
            "cycle_id": run.run_id,
            "status": run.status,
            "started_at": run.started_at.isoformat(),
            "finished_at": run.finished_at.isoformat() if run.finished_at else None,
            **run.counts,
            "failed_sources": list(run.failed_sources),
        }

    def snapshot(self) -> MonitorSnapshot:
        return MonitorSnapshot(stats=self.store.aggregate_stats(), last_cycle=self.last_cycle())

    def report(self, token: Optional[CancellationToken] = None) -> MonitorSnapshot:
        """Take a snapshot and publish it as a ``catalog.stats`` event."""
        snapshot = self.snapshot()
        last = snapshot.last_cycle or {}
        emit_event(
            logger,
            self.name,
            generate_cycle_id(),
            "catalog.stats",
            stream=self.event_stream,
            **snapshot.stats.as_dict(),
            lastCycleId=last.get("cycle_id"),
            lastCycleStatus=last.get("status"),
        )
        return snapshot

    def close(self) -> None:
        self._unsubscribe()
