"""Bootstrap and wiring for the catalog sync engine.

Provides factory functions that turn a validated
:class:`~CameraVault.CatalogSync.config.models.CatalogSyncConfig` into the
explicitly owned collaborators (store, HTTP client, fetcher, normaliser, asset
cache, jobs, monitor) and the scheduler that drives them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import httpx

from CameraVault.CatalogSync.assets import AssetCache
from CameraVault.CatalogSync.catalog.backup import BackupJob
from CameraVault.CatalogSync.catalog.store import SQLiteCatalog, open_catalog
from CameraVault.CatalogSync.config.models import CatalogSyncConfig
from CameraVault.CatalogSync.fetcher import Fetcher
from CameraVault.CatalogSync.http_session import build_http_client
from CameraVault.CatalogSync.locks import KeyedLock
from CameraVault.CatalogSync.logging_utils import EventStream, get_event_stream
from CameraVault.CatalogSync.monitor import Monitor
from CameraVault.CatalogSync.normalizer import Normalizer
from CameraVault.CatalogSync.orchestrator import DailyTrigger, IntervalTrigger, Scheduler
from CameraVault.CatalogSync.ratelimit import RateLimitRegistry
from CameraVault.CatalogSync.sync import SyncJob

logger = logging.getLogger(__name__)


def build_catalog_store(config: CatalogSyncConfig) -> SQLiteCatalog:
    """Open the catalog named by ``config``.

    Raises:
        CatalogUnavailable: If the store is unreachable or corrupted
    """
    logger.info(f"Opening SQLite catalog at {config.catalog.path}")
    return open_catalog(
        config.catalog.path,
        wal_mode=config.catalog.wal_mode,
        write_attempts=config.catalog.write_attempts,
    )


@dataclass
class Engine:
    """Every long-lived collaborator of the sync engine."""

    config: CatalogSyncConfig
    store: SQLiteCatalog
    client: httpx.Client
    rate_limits: RateLimitRegistry
    fetcher: Fetcher
    normalizer: Normalizer
    assets: AssetCache
    sync_job: SyncJob
    backup_job: BackupJob
    monitor: Monitor
    event_stream: EventStream

    def close(self) -> None:
        """Release the monitor subscription, HTTP client and catalog."""
        self.monitor.close()
        if not self.client.is_closed:
            self.client.close()
        self.store.close()
        logger.debug("Engine closed")

    def __enter__(self) -> "Engine":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def build_engine(
    config: CatalogSyncConfig,
    *,
    transport: Optional[httpx.BaseTransport] = None,
    event_stream: Optional[EventStream] = None,
) -> Engine:
    """Assemble the engine from configuration.

    Args:
        config: Validated configuration
        transport: Optional HTTP transport override (tests)
        event_stream: Event stream shared by jobs and the monitor

    Raises:
        CatalogUnavailable: If the catalog cannot be opened (fatal at startup)
        ConfigError: If a source names an unknown mapping table
    """
    stream = event_stream or get_event_stream()
    store = build_catalog_store(config)
    client = build_http_client(config.http, transport=transport)
    try:
        retry_policy = config.effective_retry()
        rate_limits = RateLimitRegistry(config.ratelimit)
        fetcher = Fetcher(client, retry_policy=retry_policy, rate_limits=rate_limits)
        normalizer = Normalizer()
        assets = AssetCache(
            store,
            client,
            config.assets,
            retry_policy=retry_policy,
            rate_limits=rate_limits,
            locks=KeyedLock(),
        )
        sync_job = SyncJob(
            store,
            fetcher,
            normalizer,
            assets,
            config.sources,
            batch_size=config.batch_size,
            enrichment_batch_size=config.assets.enrichment_batch_size,
            max_workers=config.scheduling.max_concurrent_asset_fetches,
            lock_dir=Path(config.catalog.path).resolve().parent / "locks",
            soft_locks=config.catalog.soft_locks,
            event_stream=stream,
        )
        backup_job = BackupJob(
            store,
            Path(config.catalog.backup_dir),
            retention_count=config.scheduling.backup_retention_count,
        )
        monitor = Monitor(store, event_stream=stream)
    except Exception:
        client.close()
        store.close()
        raise

    logger.info(
        f"Engine ready: sources={len(config.sources)} "
        f"config_hash={config.config_hash()[:12]}"
    )
    return Engine(
        config=config,
        store=store,
        client=client,
        rate_limits=rate_limits,
        fetcher=fetcher,
        normalizer=normalizer,
        assets=assets,
        sync_job=sync_job,
        backup_job=backup_job,
        monitor=monitor,
        event_stream=stream,
    )


def build_scheduler(engine: Engine, *, tick_seconds: float = 0.5) -> Scheduler:
    """Register the sync, backup and monitor jobs on a new scheduler.

    Closing the shared HTTP client is installed as the force-stop hook.
    """
    scheduling = engine.config.scheduling
    scheduler = Scheduler(tick_seconds=tick_seconds)
    scheduler.register(
        engine.sync_job.name,
        engine.sync_job.run,
        IntervalTrigger(hours=scheduling.discovery_interval_hours),
        run_on_start=scheduling.run_discovery_on_start,
    )
    scheduler.register(
        engine.backup_job.name,
        engine.backup_job.run,
        DailyTrigger(scheduling.backup_time_of_day),
    )
    if engine.config.monitor.enabled:
        scheduler.register(
            engine.monitor.name,
            engine.monitor.report,
            IntervalTrigger(seconds=engine.config.monitor.interval_seconds),
        )
    scheduler.add_force_stop_hook(engine.client.close)
    return scheduler
