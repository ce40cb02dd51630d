"""Tests for engine assembly and scheduler wiring."""

from __future__ import annotations

import httpx
import pytest

from CameraVault.CatalogSync.bootstrap import build_engine, build_scheduler
from CameraVault.CatalogSync.config import CatalogSyncConfig
from CameraVault.CatalogSync.errors import CatalogUnavailable, ConfigError


@pytest.fixture
def config(tmp_path) -> CatalogSyncConfig:
    return CatalogSyncConfig(
        catalog={
            "path": str(tmp_path / "camera-vault.db"),
            "backup_dir": str(tmp_path / "backups"),
            "wal_mode": False,
        },
        assets={"root": str(tmp_path / "public")},
        ratelimit={"min_interval_ms": 0},
        scheduling={"fetchRetryLimit": 2, "runDiscoveryOnStart": False},
        sources=[{"name": "seed", "kind": "static", "records": [{"brand": "Leica", "model": "M6"}]}],
    )


def test_engine_shares_collaborators(config, event_stream):
    transport = httpx.MockTransport(lambda request: httpx.Response(404))
    with build_engine(config, transport=transport, event_stream=event_stream) as engine:
        assert engine.sync_job.store is engine.store
        assert engine.backup_job.store is engine.store
        assert engine.fetcher.retry_policy.max_attempts == 2
        summary = engine.sync_job.run()
        assert summary.created == 1

    assert engine.client.is_closed


def test_scheduler_registers_jobs(config, event_stream):
    transport = httpx.MockTransport(lambda request: httpx.Response(404))
    with build_engine(config, transport=transport, event_stream=event_stream) as engine:
        scheduler = build_scheduler(engine, tick_seconds=0.01)
        assert sorted(scheduler.job_names()) == ["backup", "monitor", "sync"]


def test_monitor_job_can_be_disabled(config, event_stream):
    config.monitor.enabled = False
    with build_engine(config, event_stream=event_stream) as engine:
        scheduler = build_scheduler(engine)
        assert "monitor" not in scheduler.job_names()


def test_unknown_mapping_releases_catalog(config, event_stream):
    config.sources = [{"name": "odd", "kind": "static", "mapping": "nope"}]
    with pytest.raises(ConfigError):
        build_engine(config, event_stream=event_stream)


def test_unreadable_catalog(config, tmp_path, event_stream):
    bad = tmp_path / "camera-vault.db"
    bad.write_bytes(b"garbage" * 200)
    with pytest.raises(CatalogUnavailable):
        build_engine(config, event_stream=event_stream)


def test_soft_locks_reach_sync_job(config, event_stream):
    config.catalog.soft_locks = True
    with build_engine(config, event_stream=event_stream) as engine:
        assert engine.sync_job.soft_locks is True
        assert engine.sync_job.lock_dir.name == "locks"
