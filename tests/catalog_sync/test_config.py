"""Tests for configuration models and file/env/CLI loading."""

from __future__ import annotations

import json
import os

import pytest
import yaml

from CameraVault.CatalogSync.config import (
    CatalogSyncConfig,
    SchedulingConfig,
    SourceConfig,
    export_config_schema,
    load_config,
)
from CameraVault.CatalogSync.errors import ConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Strip CAMERAVAULT_* variables inherited from the outer environment."""
    for key in list(os.environ):
        if key.startswith("CAMERAVAULT_"):
            monkeypatch.delenv(key)


@pytest.fixture
def write_config(tmp_path):
    def _write(data, name="camera-vault.yaml"):
        path = tmp_path / name
        if name.endswith(".json"):
            path.write_text(json.dumps(data))
        else:
            path.write_text(yaml.safe_dump(data))
        return str(path)

    return _write


class TestDefaults:
    """Defaults without any file."""

    def test_scheduling_defaults(self):
        config = load_config()
        assert config.scheduling.discovery_interval_hours == 6
        assert config.scheduling.backup_time_of_day == "03:00"
        assert config.scheduling.run_discovery_on_start is True
        assert config.scheduling.backup_retention_count == 5
        assert config.scheduling.max_concurrent_asset_fetches == 4

    def test_asset_defaults(self):
        config = CatalogSyncConfig()
        assert config.assets.image_size == (1200, 900)
        assert config.assets.thumbnail_size == (400, 300)
        assert (config.assets.image_quality, config.assets.thumbnail_quality) == (90, 85)
        assert config.ratelimit.min_interval_ms == 2000
        assert config.sources == []


class TestFileLoading:
    """YAML and JSON files."""

    def test_camel_case_scheduling_keys(self, write_config):
        path = write_config(
            {"scheduling": {"discoveryIntervalHours": 12, "backupTimeOfDay": "4:5"}}
        )
        config = load_config(path)
        assert config.scheduling.discovery_interval_hours == 12
        assert config.scheduling.backup_time_of_day == "04:05"

    def test_json_file(self, write_config):
        path = write_config({"catalog": {"path": "/srv/vault.db"}}, name="vault.json")
        assert load_config(path).catalog.path == "/srv/vault.db"

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config(str(tmp_path / "absent.yaml"))

    def test_unsupported_suffix(self, tmp_path):
        path = tmp_path / "vault.toml"
        path.write_text("[catalog]\n")
        with pytest.raises(ConfigError, match="Unsupported"):
            load_config(str(path))

    def test_non_mapping_root(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError, match="mapping"):
            load_config(str(path))


class TestPrecedence:
    """file < environment < CLI."""

    def test_env_beats_camel_case_file_key(self, write_config, monkeypatch):
        path = write_config({"scheduling": {"backupTimeOfDay": "02:00"}})
        monkeypatch.setenv("CAMERAVAULT_SCHEDULING__BACKUP_TIME_OF_DAY", "04:30")

        assert load_config(path).scheduling.backup_time_of_day == "04:30"

    def test_env_values_are_coerced(self, monkeypatch):
        monkeypatch.setenv("CAMERAVAULT_SCHEDULING__BACKUP_RETENTION_COUNT", "7")
        monkeypatch.setenv("CAMERAVAULT_CATALOG__WAL_MODE", "false")

        config = load_config()
        assert config.scheduling.backup_retention_count == 7
        assert config.catalog.wal_mode is False

    def test_soft_lock_switch_lives_in_catalog_section(self, monkeypatch):
        monkeypatch.setenv("CAMERAVAULT_CATALOG__SOFT_LOCKS", "true")
        assert load_config().catalog.soft_locks is True

    def test_cli_beats_env_and_file(self, write_config, monkeypatch):
        path = write_config({"scheduling": {"backupTimeOfDay": "02:00"}})
        monkeypatch.setenv("CAMERAVAULT_SCHEDULING__BACKUP_TIME_OF_DAY", "04:30")

        config = load_config(path, cli_overrides={"scheduling": {"backupTimeOfDay": "05:15"}})
        assert config.scheduling.backup_time_of_day == "05:15"

    def test_cli_override_keeps_sibling_file_keys(self, write_config):
        path = write_config({"scheduling": {"discoveryIntervalHours": 2, "runDiscoveryOnStart": True}})

        config = load_config(path, cli_overrides={"scheduling": {"run_discovery_on_start": False}})
        assert config.scheduling.run_discovery_on_start is False
        assert config.scheduling.discovery_interval_hours == 2


class TestValidation:
    """Invalid configurations are reported as ConfigError."""

    @pytest.mark.parametrize("value", ["25:00", "12:60", "noon", "1200"])
    def test_invalid_backup_time(self, value):
        with pytest.raises(ConfigError):
            load_config(cli_overrides={"scheduling": {"backupTimeOfDay": value}})

    def test_unknown_keys_are_rejected(self):
        with pytest.raises(ConfigError):
            load_config(cli_overrides={"catalog": {"pth": "typo.db"}})

    def test_duplicate_source_names(self):
        sources = [
            {"name": "seed", "kind": "static"},
            {"name": "seed", "kind": "static"},
        ]
        with pytest.raises(ConfigError, match="Duplicate"):
            load_config(cli_overrides={"sources": sources})

    def test_json_source_requires_url(self):
        with pytest.raises(ConfigError, match="url"):
            load_config(cli_overrides={"sources": [{"name": "api", "kind": "json"}]})

    def test_static_source_without_url(self):
        source = SourceConfig(name="seed", kind="static", records=[{"brand": "Leica"}])
        assert source.url is None

    def test_non_positive_interval(self):
        with pytest.raises(ValueError):
            SchedulingConfig(discovery_interval_hours=0)


class TestDerivedValues:
    def test_fetch_retry_limit_overrides_attempts(self):
        config = CatalogSyncConfig(scheduling={"fetchRetryLimit": 5})
        assert config.effective_retry().max_attempts == 5
        assert config.retry.max_attempts == 3

    def test_effective_retry_without_limit(self):
        config = CatalogSyncConfig()
        assert config.effective_retry() is config.retry

    def test_config_hash_is_stable(self, write_config):
        path = write_config({"scheduling": {"backupTimeOfDay": "03:00"}})
        first = load_config(path).config_hash()
        assert first == load_config(path).config_hash()
        assert first == CatalogSyncConfig().config_hash()
        assert first != load_config(cli_overrides={"batch_size": 10}).config_hash()

    def test_schema_export(self):
        schema = export_config_schema()
        assert schema["title"] == "CatalogSyncConfig"
        assert "scheduling" in schema["properties"]
