"""Cycle summary model and rendering helpers.

Responsibilities
----------------
- Provide the :class:`CycleSummary` dataclass that packages the counts of one
  discovery cycle for the catalog (``sync_runs``), the event stream, the
  monitor and the CLI.
- Render the same information for humans via :func:`format_cycle_summary`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from CameraVault.CatalogSync.catalog.models import SyncRunRecord

__all__ = ["CycleSummary", "format_cycle_summary"]

COUNT_FIELDS = (
    "fetched",
    "skipped",
    "created",
    "updated",
    "lost",
    "enriched",
    "enrichment_failed",
)


@dataclass
class CycleSummary:
    """Aggregated counts captured at the end of one sync cycle."""

    cycle_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    status: str = "running"
    fetched: int = 0
    skipped: int = 0
    created: int = 0
    updated: int = 0
    lost: int = 0
    enriched: int = 0
    enrichment_failed: int = 0
    failed_sources: List[str] = field(default_factory=list)
    skip_reasons: Dict[str, int] = field(default_factory=dict)
    enrichment_failure_reasons: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def duration_s(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def counts(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in COUNT_FIELDS}

    def note_skip(self, reason: str) -> None:
        self.skipped += 1
        key = reason.split(":", 1)[0]
        self.skip_reasons[key] = self.skip_reasons.get(key, 0) + 1

    def note_enrichment_failure(self, reason: Optional[str]) -> None:
        self.enrichment_failed += 1
        key = reason or "error"
        self.enrichment_failure_reasons[key] = self.enrichment_failure_reasons.get(key, 0) + 1

    def as_dict(self) -> Dict[str, Any]:
        """Structured payload for events, logs and ``--json`` output."""
        return {
            "cycle_id": self.cycle_id,
            "status": self.status,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_s": round(self.duration_s, 3),
            **self.counts(),
            "failed_sources": list(self.failed_sources),
            "skip_reasons": dict(self.skip_reasons),
            "enrichment_failure_reasons": dict(self.enrichment_failure_reasons),
            "error": self.error,
        }

    def as_record(self) -> SyncRunRecord:
        return SyncRunRecord(
            run_id=self.cycle_id,
            started_at=self.started_at,
            finished_at=self.finished_at,
            status=self.status,
            counts=self.counts(),
            failed_sources=list(self.failed_sources),
        )


def format_cycle_summary(summary: CycleSummary) -> str:
    """Human-readable multi-line rendering of ``summary``."""
    lines = [
        f"Cycle {summary.cycle_id}: {summary.status} in {summary.duration_s:.1f}s",
        f"  fetched={summary.fetched} skipped={summary.skipped} "
        f"created={summary.created} updated={summary.updated} lost={summary.lost}",
        f"  enriched={summary.enriched} enrichment_failed={summary.enrichment_failed}",
    ]
    if summary.failed_sources:
        lines.append(f"  failed_sources: {', '.join(summary.failed_sources)}")
    if summary.skip_reasons:
        formatted = ", ".join(f"{k} ({v})" for k, v in sorted(summary.skip_reasons.items()))
        lines.append(f"  skip_reasons: {formatted}")
    if summary.enrichment_failure_reasons:
        formatted = ", ".join(
            f"{k} ({v})" for k, v in sorted(summary.enrichment_failure_reasons.items())
        )
        lines.append(f"  enrichment_failures: {formatted}")
    if summary.error:
        lines.append(f"  error: {summary.error}")
    return "\n".join(lines)
