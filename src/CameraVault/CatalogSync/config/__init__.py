"""
CatalogSync Configuration Package

Public API for loading, validating, and introspecting CatalogSync configuration.

Example:
    from CameraVault.CatalogSync.config import load_config

    config = load_config(
        path="camera-vault.yaml",
        cli_overrides={"scheduling": {"runDiscoveryOnStart": False}},
    )
    config_id = config.config_hash()
"""

from .loader import (
    export_config_schema,
    load_config,
)
from .models import (
    AssetConfig,
    CatalogConfig,
    CatalogSyncConfig,
    HttpClientConfig,
    LoggingConfig,
    MonitorConfig,
    RateLimitPolicy,
    RetryPolicy,
    SchedulingConfig,
    SourceConfig,
)

__all__ = [
    # Models
    "CatalogSyncConfig",
    "CatalogConfig",
    "AssetConfig",
    "HttpClientConfig",
    "RetryPolicy",
    "RateLimitPolicy",
    "SchedulingConfig",
    "MonitorConfig",
    "LoggingConfig",
    "SourceConfig",
    # Loading/validation
    "load_config",
    "export_config_schema",
]
