"""CLI commands for the camera catalog sync engine.

Provides 8 commands:
  - run: Start the scheduler (discovery, backups, monitor) until interrupted
  - sync: Run one discovery cycle
  - backup: Write one catalog snapshot and apply retention
  - stats: Show catalog counts and image coverage
  - show: Display one camera with its attributions
  - snapshots: List catalog snapshots
  - validate-config: Load and validate a configuration file
  - schema: Print the configuration JSON schema

Exit codes: 0 success, 1 job or configuration failure, 2 catalog unavailable.
"""

from __future__ import annotations

import json
import logging
import signal
import threading
from pathlib import Path
from typing import Any, Dict, Optional

import typer

from CameraVault.CatalogSync.bootstrap import build_catalog_store, build_engine, build_scheduler
from CameraVault.CatalogSync.catalog.backup import BackupJob
from CameraVault.CatalogSync.config import CatalogSyncConfig, export_config_schema, load_config
from CameraVault.CatalogSync.errors import CatalogSyncError, CatalogUnavailable, ConfigError
from CameraVault.CatalogSync.logging_utils import setup_logging
from CameraVault.CatalogSync.summary import format_cycle_summary

logger = logging.getLogger(__name__)
app = typer.Typer(help="Camera catalog ingestion and sync engine")

EXIT_FAILURE = 1
EXIT_CATALOG_UNAVAILABLE = 2


def _load(
    config_path: Optional[str],
    log_level: Optional[str] = None,
    cli_overrides: Optional[Dict[str, Any]] = None,
) -> CatalogSyncConfig:
    try:
        config = load_config(path=config_path, cli_overrides=cli_overrides)
    except ConfigError as e:
        typer.echo(f"✗ Invalid configuration: {e}", err=True)
        raise typer.Exit(EXIT_FAILURE)

    setup_logging(
        level=log_level or config.logging.level,
        log_dir=Path(config.logging.log_dir) if config.logging.log_dir else None,
        max_log_size_mb=config.logging.max_log_size_mb,
        backup_count=config.logging.backup_count,
    )
    return config


def _fail(error: CatalogSyncError) -> typer.Exit:
    if isinstance(error, CatalogUnavailable):
        typer.echo(f"✗ Catalog unavailable: {error}", err=True)
        return typer.Exit(EXIT_CATALOG_UNAVAILABLE)
    typer.echo(f"✗ Error: {error}", err=True)
    return typer.Exit(EXIT_FAILURE)


ConfigOption = typer.Option(None, "--config", "-c", help="Config file path (YAML or JSON)")
LogLevelOption = typer.Option(None, "--log-level", help="Override logging level")


@app.command()
def run(
    config_path: Optional[str] = ConfigOption,
    log_level: Optional[str] = LogLevelOption,
    initial_sync: Optional[bool] = typer.Option(
        None, "--initial-sync/--no-initial-sync", help="Run discovery immediately on start"
    ),
) -> None:
    """Start the scheduler and run until SIGINT/SIGTERM."""
    overrides: Dict[str, Any] = {}
    if initial_sync is not None:
        overrides = {"scheduling": {"run_discovery_on_start": initial_sync}}
    config = _load(config_path, log_level, overrides)

    try:
        engine = build_engine(config)
    except CatalogSyncError as e:
        raise _fail(e)

    shutdown = threading.Event()

    def _request_shutdown(signum, frame) -> None:
        logger.info(f"Received signal {signum}; shutting down")
        shutdown.set()

    signal.signal(signal.SIGINT, _request_shutdown)
    signal.signal(signal.SIGTERM, _request_shutdown)

    with engine:
        scheduler = build_scheduler(engine)
        scheduler.start()
        typer.echo(
            f"✓ Scheduler running: discovery every {config.scheduling.discovery_interval_hours}h, "
            f"backup daily at {config.scheduling.backup_time_of_day}"
        )
        while not shutdown.wait(1.0):
            pass
        clean = scheduler.stop(grace_seconds=config.scheduling.shutdown_grace_seconds)
        if not clean:
            typer.echo("✗ Jobs did not stop within the grace period; forced stop", err=True)


@app.command()
def sync(
    config_path: Optional[str] = ConfigOption,
    log_level: Optional[str] = LogLevelOption,
    as_json: bool = typer.Option(False, "--json", help="Print the summary as JSON"),
) -> None:
    """Run one discovery cycle."""
    config = _load(config_path, log_level)
    try:
        with build_engine(config) as engine:
            summary = engine.sync_job.run()
    except CatalogSyncError as e:
        raise _fail(e)

    if as_json:
        typer.echo(json.dumps(summary.as_dict(), indent=2))
    else:
        typer.echo(format_cycle_summary(summary))
    if summary.status == "failed":
        raise typer.Exit(EXIT_FAILURE)


@app.command()
def backup(
    config_path: Optional[str] = ConfigOption,
    log_level: Optional[str] = LogLevelOption,
) -> None:
    """Write one catalog snapshot and apply retention."""
    config = _load(config_path, log_level)
    try:
        with build_engine(config) as engine:
            metadata = engine.backup_job.run()
    except CatalogSyncError as e:
        raise _fail(e)

    typer.echo(f"✓ Snapshot written: {metadata.destination_path}")
    typer.echo(f"  Records: {metadata.record_count}")
    typer.echo(f"  Size: {metadata.file_size_bytes} bytes")
    typer.echo(f"  SHA-256: {metadata.checksum_sha256}")


@app.command()
def stats(
    config_path: Optional[str] = ConfigOption,
    as_json: bool = typer.Option(False, "--json", help="Print stats as JSON"),
) -> None:
    """Show catalog counts and image coverage."""
    config = _load(config_path, "WARNING")
    try:
        with build_catalog_store(config) as store:
            catalog_stats = store.aggregate_stats()
            runs = store.recent_runs(limit=1)
    except CatalogSyncError as e:
        raise _fail(e)

    if as_json:
        typer.echo(json.dumps(catalog_stats.as_dict(), indent=2))
        return

    typer.echo("\nCatalog statistics:")
    typer.echo(f"  Total cameras: {catalog_stats.total}")
    typer.echo(f"  Verified: {catalog_stats.verified}")
    typer.echo(f"  Rumors: {catalog_stats.rumors}")
    typer.echo(f"  With images: {catalog_stats.with_images}")
    typer.echo(f"  Image coverage: {catalog_stats.coverage_percent}%")
    if runs:
        last = runs[0]
        typer.echo(f"  Last cycle: {last.run_id} {last.status} at {last.started_at.isoformat()}")


@app.command()
def show(
    camera_id: str = typer.Argument(..., help="Camera id (e.g. canon-eos-r5-2020)"),
    config_path: Optional[str] = ConfigOption,
) -> None:
    """Display one camera with its attributions."""
    config = _load(config_path, "WARNING")
    try:
        with build_catalog_store(config) as store:
            record = store.lookup(camera_id)
            attributions = store.attributions_for(camera_id)
            attempt = store.image_attempts(camera_id)
    except CatalogSyncError as e:
        raise _fail(e)

    if record is None:
        typer.echo(f"No camera found for {camera_id}")
        raise typer.Exit(EXIT_FAILURE)

    typer.echo(f"\n{record.full_name} ({record.id})")
    typer.echo(f"  Status: {record.status.value}")
    typer.echo(f"  Category: {record.category or '-'}")
    typer.echo(f"  Release year: {record.release_year or '-'}")
    typer.echo(f"  MSRP: {record.msrp if record.msrp is not None else '-'}")
    typer.echo(f"  Sensor: {record.sensor or '-'}")
    typer.echo(f"  Image: {record.local_image_path or '(not cached)'}")
    typer.echo(f"  Thumbnail: {record.thumbnail_path or '-'}")
    typer.echo(f"  Last updated: {record.last_updated.isoformat() if record.last_updated else '-'}")
    if attempt is not None:
        typer.echo(
            f"  Failed image attempts: {attempt.attempts} (last: {attempt.last_error})"
        )
    if attributions:
        typer.echo(f"\n{len(attributions)} attribution(s):")
        for row in attributions:
            typer.echo(f"  [{row.id}] {row.attribution_text} | {row.license} ({row.local_path})")


@app.command()
def snapshots(config_path: Optional[str] = ConfigOption) -> None:
    """List catalog snapshots, newest first."""
    config = _load(config_path, "WARNING")
    try:
        with build_catalog_store(config) as store:
            backup_job = BackupJob(
                store,
                Path(config.catalog.backup_dir),
                retention_count=config.scheduling.backup_retention_count,
            )
            listed = backup_job.list_snapshots()
    except CatalogSyncError as e:
        raise _fail(e)

    if not listed:
        typer.echo("No snapshots found")
        return
    typer.echo(f"\n{len(listed)} snapshot(s):\n")
    for path, metadata in listed:
        if metadata is None:
            typer.echo(f"  {path.name} (metadata missing)")
        else:
            typer.echo(
                f"  {path.name}  records={metadata.record_count} "
                f"size={metadata.file_size_bytes}B"
            )


@app.command("validate-config")
def validate_config(config_path: Optional[str] = ConfigOption) -> None:
    """Load and validate configuration, then print a digest."""
    config = _load(config_path, "WARNING")
    typer.echo("✓ Configuration valid")
    typer.echo(f"  Hash: {config.config_hash()}")
    typer.echo(f"  Catalog: {config.catalog.path}")
    typer.echo(f"  Sources: {', '.join(s.name for s in config.sources) or '(none)'}")
    typer.echo(
        f"  Discovery: every {config.scheduling.discovery_interval_hours}h; "
        f"backup daily at {config.scheduling.backup_time_of_day}"
    )


@app.command()
def schema() -> None:
    """Print the configuration JSON schema."""
    typer.echo(json.dumps(export_config_schema(), indent=2))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
