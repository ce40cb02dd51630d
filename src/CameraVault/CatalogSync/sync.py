# === NAVMAP v1 ===
# {
#   "module": "CameraVault.CatalogSync.sync",
#   "purpose": "One discovery cycle: fetch, normalise, persist and enrich camera records.",
#   "sections": [
#     {"id": "syncstate", "name": "SyncState", "anchor": "class-syncstate", "kind": "class"},
#     {"id": "syncjob", "name": "SyncJob", "anchor": "class-syncjob", "kind": "class"}
#   ]
# }
# === /NAVMAP ===

"""Discovery cycle orchestration.

A cycle walks the configured sources one at a time. Each source is fetched
lazily in chunks of ``batch_size`` records; every chunk is normalised and then
upserted record by record, so a crash loses at most the chunk in flight. Once
every source has been processed, rows still lacking a cached image are handed
to the asset cache on a bounded worker pool.

Failures stay with the smallest unit that produced them:

- a skipped record is counted and logged;
- a record that cannot be written, after retries or at all, is counted as ``lost``;
- an unreachable or malformed source lands in ``failed_sources``;
- an image failure is recorded for retry in a later cycle.

Cancellation is honoured between chunks, between sources and before
enrichment work is submitted, never inside a catalog transaction.
"""

from __future__ import annotations

import itertools
import logging
import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, Optional, Sequence

from CameraVault.CatalogSync.assets import AcquisitionStatus, AssetCache
from CameraVault.CatalogSync.cancellation import CancellationToken
from CameraVault.CatalogSync.catalog.models import UpsertOutcome
from CameraVault.CatalogSync.catalog.store import SQLiteCatalog
from CameraVault.CatalogSync.config.models import SourceConfig
from CameraVault.CatalogSync.errors import (
    ConfigError,
    MalformedPayload,
    SourceUnavailable,
    StoreWriteFailed,
)
from CameraVault.CatalogSync.fetcher import Fetcher
from CameraVault.CatalogSync.locks import Timeout, job_lock
from CameraVault.CatalogSync.logging_utils import EventStream, emit_event, generate_cycle_id
from CameraVault.CatalogSync.mappings import get_mapping
from CameraVault.CatalogSync.normalizer import Normalizer, SkippedRecord
from CameraVault.CatalogSync.summary import CycleSummary

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    NORMALIZING = "normalizing"
    PERSISTING = "persisting"
    ENRICHING = "enriching"
    FAILED = "failed"


def _chunked(items: Iterable, size: int) -> Iterator[List]:
    iterator = iter(items)
    while True:
        chunk = list(itertools.islice(iterator, size))
        if not chunk:
            return
        yield chunk


class SyncJob:
    """Run discovery cycles against the catalog.

    Collaborators are injected so tests and the CLI can assemble the job from
    fakes or from configuration (see :func:`CameraVault.CatalogSync.bootstrap.build_engine`).
    """

    name = "sync"

    def __init__(
        self,
        store: SQLiteCatalog,
        fetcher: Fetcher,
        normalizer: Normalizer,
        assets: Optional[AssetCache],
        sources: Sequence[SourceConfig],
        *,
        batch_size: int = 25,
        enrichment_batch_size: int = 50,
        max_workers: int = 4,
        lock_dir: Optional[Path] = None,
        soft_locks: bool = False,
        event_stream: Optional[EventStream] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        for source in sources:
            try:
                get_mapping(source.mapping)
            except KeyError as e:
                raise ConfigError(f"source '{source.name}': {e.args[0]}") from e

        self.store = store
        self.fetcher = fetcher
        self.normalizer = normalizer
        self.assets = assets
        self.sources = list(sources)
        self.batch_size = max(1, batch_size)
        self.enrichment_batch_size = enrichment_batch_size
        self.max_workers = max(1, max_workers)
        self.lock_dir = Path(lock_dir) if lock_dir is not None else None
        self.soft_locks = soft_locks
        self.event_stream = event_stream
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._state = SyncState.IDLE
        self._state_lock = threading.Lock()

    @property
    def state(self) -> SyncState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: SyncState) -> None:
        with self._state_lock:
            self._state = state

    def _emit(self, cycle_id: str, event: str, *, level: int = logging.INFO, **fields) -> None:
        emit_event(logger, self.name, cycle_id, event, level=level, stream=self.event_stream, **fields)

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def run(self, token: Optional[CancellationToken] = None) -> CycleSummary:
        """Execute one cycle and return its summary.

        The summary is persisted to ``sync_runs`` and published as a
        ``sync.completed`` event regardless of outcome.
        """
        token = token or CancellationToken()
        summary = CycleSummary(cycle_id=generate_cycle_id(), started_at=self._clock())

        if self.lock_dir is None:
            return self._run_cycle(summary, token)

        try:
            with job_lock(self.lock_dir, self.name, soft=self.soft_locks):
                return self._run_cycle(summary, token)
        except Timeout:
            summary.status = "skipped"
            summary.finished_at = self._clock()
            self._emit(
                summary.cycle_id,
                "sync.skipped",
                level=logging.WARNING,
                reason="another process holds the sync lock",
            )
            return summary

    def _run_cycle(self, summary: CycleSummary, token: CancellationToken) -> CycleSummary:
        cycle_id = summary.cycle_id
        self._set_state(SyncState.IDLE)
        self._emit(cycle_id, "sync.started", sources=len(self.sources))

        try:
            for source in self.sources:
                if token.is_cancelled():
                    break
                if not source.enabled:
                    logger.debug(f"Source {source.name} disabled; skipping")
                    continue
                self._sync_source(source, summary, token)

            if not token.is_cancelled():
                self._enrich(summary, token)

            if token.is_cancelled():
                summary.status = "cancelled"
            elif summary.failed_sources or summary.lost:
                summary.status = "partial"
            else:
                summary.status = "ok"
            self._set_state(SyncState.IDLE)
        except Exception as e:
            self._set_state(SyncState.FAILED)
            summary.status = "failed"
            summary.error = repr(e)
            logger.exception(f"Sync cycle {cycle_id} failed")
        finally:
            summary.finished_at = self._clock()
            try:
                self.store.record_sync_run(summary.as_record())
            except sqlite3.Error as e:
                logger.error(f"Could not record sync run {cycle_id}: {e}")

        self._emit(
            cycle_id,
            "sync.completed",
            level=logging.INFO if summary.status in ("ok", "cancelled") else logging.WARNING,
            **{k: v for k, v in summary.as_dict().items() if k != "cycle_id"},
        )
        return summary

    def _sync_source(
        self, source: SourceConfig, summary: CycleSummary, token: CancellationToken
    ) -> None:
        cycle_id = summary.cycle_id
        self._set_state(SyncState.FETCHING)
        self._emit(cycle_id, "source.started", source=source.name, kind=source.kind)
        before = (summary.fetched, summary.created, summary.updated)

        try:
            for chunk in _chunked(self.fetcher.fetch(source, token), self.batch_size):
                summary.fetched += len(chunk)

                self._set_state(SyncState.NORMALIZING)
                outcomes = list(self.normalizer.normalize_many(chunk, source))

                self._set_state(SyncState.PERSISTING)
                for outcome in outcomes:
                    if isinstance(outcome, SkippedRecord):
                        summary.note_skip(outcome.reason)
                        logger.info(f"Skipped record from {source.name}: {outcome.reason}")
                        continue
                    try:
                        result = self.store.upsert(outcome)
                    except StoreWriteFailed as e:
                        summary.lost += 1
                        logger.error(f"Lost record {outcome.id} from {source.name}: {e}")
                        continue
                    except Exception:
                        summary.lost += 1
                        logger.exception(f"Lost record {outcome.id} from {source.name}")
                        continue
                    if result is UpsertOutcome.CREATED:
                        summary.created += 1
                    else:
                        summary.updated += 1

                if token.is_cancelled():
                    logger.info(f"Cancellation requested; stopping {source.name} after chunk")
                    break
                self._set_state(SyncState.FETCHING)
        except (SourceUnavailable, MalformedPayload) as e:
            summary.failed_sources.append(source.name)
            self._emit(
                cycle_id,
                "source.failed",
                level=logging.WARNING,
                source=source.name,
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        self._emit(
            cycle_id,
            "source.completed",
            source=source.name,
            fetched=summary.fetched - before[0],
            created=summary.created - before[1],
            updated=summary.updated - before[2],
        )

    def _enrich(self, summary: CycleSummary, token: CancellationToken) -> None:
        if self.assets is None:
            return
        self._set_state(SyncState.ENRICHING)

        candidates = self.store.scan_missing_images(self.enrichment_batch_size)
        if not candidates:
            return
        self._emit(summary.cycle_id, "enrichment.started", candidates=len(candidates))

        with ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="cameravault-asset"
        ) as pool:
            futures = {}
            for camera in candidates:
                if token.is_cancelled():
                    break
                futures[pool.submit(self.assets.acquire, camera, token)] = camera.id

            for future in as_completed(futures):
                camera_id = futures[future]
                try:
                    result = future.result()
                except Exception:
                    logger.exception(f"Enrichment worker crashed for {camera_id}")
                    summary.note_enrichment_failure("worker-error")
                    continue
                if result.status is AcquisitionStatus.ENRICHED:
                    summary.enriched += 1
                elif result.status is AcquisitionStatus.FAILED:
                    summary.note_enrichment_failure(result.reason)

        if summary.enriched:
            try:
                self.assets.write_attribution_report()
            except OSError as e:
                logger.error(f"Could not write attribution report: {e}")

        self._emit(
            summary.cycle_id,
            "enrichment.completed",
            enriched=summary.enriched,
            failed=summary.enrichment_failed,
        )
