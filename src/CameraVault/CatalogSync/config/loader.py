# === NAVMAP v1 ===
# {
#   "module": "CameraVault.CatalogSync.config.loader",
#   "purpose": "Configuration Loading with File/Env/CLI Precedence.",
#   "sections": [
#     {"id": "read-file", "name": "_read_file", "anchor": "function-read-file", "kind": "function"},
#     {"id": "canonical-keys", "name": "_canonical_keys", "anchor": "function-canonical-keys", "kind": "function"},
#     {"id": "assign-nested", "name": "_assign_nested", "anchor": "function-assign-nested", "kind": "function"},
#     {"id": "coerce-env-value", "name": "_coerce_env_value", "anchor": "function-coerce-env-value", "kind": "function"},
#     {"id": "merge-env-overrides", "name": "_merge_env_overrides", "anchor": "function-merge-env-overrides", "kind": "function"},
#     {"id": "merge-cli-overrides", "name": "_merge_cli_overrides", "anchor": "function-merge-cli-overrides", "kind": "function"},
#     {"id": "load-config", "name": "load_config", "anchor": "function-load-config", "kind": "function"},
#     {"id": "export-config-schema", "name": "export_config_schema", "anchor": "function-export-config-schema", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""
Configuration Loading with File/Env/CLI Precedence

Implements three-level config composition:
1. **File level** (YAML/JSON): base configuration
2. **Environment level**: CAMERAVAULT_* prefixed variables override file
3. **CLI level**: programmatic overrides win

Environment variables use double-underscore notation:
  CAMERAVAULT_CATALOG__PATH="/srv/vault.db"  →  catalog.path="/srv/vault.db"
  CAMERAVAULT_SCHEDULING__BACKUP_RETENTION_COUNT=7  →  scheduling.backup_retention_count=7
"""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from CameraVault.CatalogSync.errors import ConfigError

from .models import CatalogSyncConfig

_LOGGER = logging.getLogger(__name__)

ENV_PREFIX = "CAMERAVAULT_"


def _read_file(path: str) -> dict[str, Any]:
    """
    Read YAML or JSON config file.

    Args:
        path: File path (suffix determines format: .yaml/.yml or .json)

    Returns:
        Parsed config dictionary

    Raises:
        ConfigError: If file cannot be read or parsed
    """
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Config file not found: {path}")

    try:
        text = p.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e

    suffix = p.suffix.lower()

    if suffix in (".yaml", ".yml"):
        try:
            data = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    elif suffix == ".json":
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e
    else:
        raise ConfigError(f"Unsupported file format: {suffix}. Use .yaml or .json")

    if not isinstance(data, dict):
        raise ConfigError(f"Config root in {path} must be a mapping")
    return data


def _canonical_keys(data: Mapping[str, Any] | None) -> dict[str, Any]:
    """
    Rename camelCase section keys (``backupTimeOfDay``) to field names.

    File, environment and CLI layers may spell the same key differently; they
    must agree before merging so that precedence holds.
    """
    if not data:
        return {}
    result = dict(data)
    for section, info in CatalogSyncConfig.model_fields.items():
        model = info.annotation
        block = result.get(section)
        if not isinstance(block, Mapping) or not hasattr(model, "model_fields"):
            continue
        aliases = {f.alias: name for name, f in model.model_fields.items() if f.alias}
        result[section] = {aliases.get(key, key): value for key, value in block.items()}
    return result


def _assign_nested(data: dict[str, Any], dotted_key: str, value: Any) -> None:
    """
    Assign value to nested dict using dot notation.

    Example:
        _assign_nested(data, "http.user_agent", "MyUA")
        → data["http"]["user_agent"] = "MyUA"
    """
    keys = dotted_key.split(".")
    current = data

    for key in keys[:-1]:
        if not isinstance(current.get(key), dict):
            current[key] = {}
        current = current[key]

    current[keys[-1]] = value


def _coerce_env_value(value: str) -> Any:
    """
    Attempt to coerce environment variable string to appropriate type.

    Tries JSON parsing first (handles lists, dicts, bools, numbers).
    Falls back to string if JSON fails.
    """
    try:
        return json.loads(value)
    except (json.JSONDecodeError, ValueError):
        pass

    if value.lower() in ("true", "false"):
        return value.lower() == "true"

    return value


def _merge_env_overrides(data: dict[str, Any], env_prefix: str = ENV_PREFIX) -> dict[str, Any]:
    """
    Overlay environment variables onto config dict.

    Args:
        data: Base config dict (will be modified)
        env_prefix: Environment variable prefix (default: CAMERAVAULT_)

    Returns:
        Modified data dict
    """
    for env_key, env_value in os.environ.items():
        if not env_key.startswith(env_prefix):
            continue

        relative_key = env_key[len(env_prefix) :].lower()
        dotted_key = relative_key.replace("__", ".")
        coerced_value = _coerce_env_value(env_value)

        _assign_nested(data, dotted_key, coerced_value)
        _LOGGER.debug(f"Environment override: {env_key} → {dotted_key} = {coerced_value!r}")

    return data


def _merge_cli_overrides(
    data: dict[str, Any], cli_overrides: Mapping[str, Any] | None
) -> dict[str, Any]:
    """
    Recursively merge CLI overrides into base config dict.

    Later values win (standard dict.update() semantics).
    """
    if not cli_overrides:
        return data

    for key, value in cli_overrides.items():
        if isinstance(value, Mapping) and isinstance(data.get(key), dict):
            data[key] = _merge_cli_overrides(data[key], value)
        else:
            data[key] = value
        _LOGGER.debug(f"CLI override: {key} = {value!r}")

    return data


# ============================================================================
# Public API
# ============================================================================


def load_config(
    path: str | None = None,
    env_prefix: str = ENV_PREFIX,
    cli_overrides: Mapping[str, Any] | None = None,
) -> CatalogSyncConfig:
    """
    Load CatalogSyncConfig from file, environment, and CLI with proper precedence.

    **Precedence:** file < environment < CLI

    Raises:
        ConfigError: If config is invalid or file cannot be read
    """
    data: dict[str, Any] = {}

    if path:
        data = _canonical_keys(_read_file(path))
        _LOGGER.info(f"Loaded config from {path}")

    data = _merge_env_overrides(data, env_prefix)
    data = _merge_cli_overrides(data, _canonical_keys(cli_overrides))

    try:
        config = CatalogSyncConfig.model_validate(data)
    except ValidationError as e:
        _LOGGER.error(f"Configuration validation failed: {e}")
        raise ConfigError(f"Invalid configuration: {e}") from e

    _LOGGER.info(f"Configuration validated. Config hash: {config.config_hash()[:8]}...")
    return config


def export_config_schema() -> dict[str, Any]:
    """
    Export JSON Schema for CatalogSyncConfig.

    Returns:
        JSON schema dict (Pydantic v2 format)
    """
    return CatalogSyncConfig.model_json_schema()
