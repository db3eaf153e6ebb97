import logging
import signal
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

import typer

from gcs_sync.config.resolver import ConfigOverrides, resolve_config
from gcs_sync.config.settings import Settings
from gcs_sync.config.sync_config import SyncConfig
from gcs_sync.errors import ConfigurationError
from gcs_sync.services.health import check_health
from gcs_sync.services.scheduler import SyncScheduler
from gcs_sync.storage.cloud_storage import create_gcs_manager_from_config
from gcs_sync.storage.credential_resolver import load_service_account_file
from gcs_sync.utils.logger_setup import setup_activity_log, setup_logging

app = typer.Typer(
    name="gcs-sync",
    help="Mirror local directories into Google Cloud Storage, once or on an interval.",
    add_completion=False
)

PAIR_HELP = "Pair to sync as LOCAL_PATH=gs://BUCKET[/PREFIX]. Repeatable."


def _load_config(overrides: ConfigOverrides, config_file: Optional[Path]) -> SyncConfig:
    try:
        return resolve_config(overrides, config_file)
    except ConfigurationError as e:
        typer.secho(f"Configuration error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=Settings.EXIT_CONFIG_ERROR)


def _configure_logging(config: SyncConfig, verbose: bool) -> logging.Logger:
    try:
        logger = setup_logging(
            logger_name="gcs_sync",
            log_level=logging.DEBUG if verbose else logging.INFO,
            log_dir=config.log_dir,
        )
        setup_activity_log(config.log_dir)
    except OSError as e:
        typer.secho(f"Configuration error: cannot write logs to {config.log_dir}: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=Settings.EXIT_CONFIG_ERROR)
    return logger


def _run_scheduler(config: SyncConfig, logger: logging.Logger) -> int:
    scheduler = SyncScheduler(config, store_factory=create_gcs_manager_from_config, logger_obj=logger)

    def _handle_signal(signum, _frame):
        logger.warning(f"Received signal {signum}, stopping")
        scheduler.stop()

    previous = {sig: signal.signal(sig, _handle_signal) for sig in (signal.SIGTERM, signal.SIGINT)}
    try:
        exit_code = scheduler.run()
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    report = scheduler.last_report
    if report is not None:
        for outcome in report.outcomes:
            color = typer.colors.GREEN if outcome.ok else typer.colors.RED
            line = f"{outcome.status.value}: {outcome.pair.name}"
            if outcome.dry_run:
                line += f" (would upload {outcome.planned_uploads}, would delete {outcome.planned_deletes})"
            else:
                line += f" (uploaded {outcome.uploaded}, deleted {outcome.deleted}, unchanged {outcome.unchanged})"
            typer.secho(line, fg=color)
            for error in outcome.errors:
                typer.secho(f"  {error}", fg=typer.colors.RED)
    return exit_code


@app.command()
def run(
    pair: Optional[List[str]] = typer.Option(None, "--pair", "-p", help=PAIR_HELP),
    local_path: Optional[str] = typer.Option(None, "--local-path", help="Path to local folder to sync"),
    gcs_bucket: Optional[str] = typer.Option(None, "--gcs-bucket", help="GCS bucket path (e.g., gs://my-bucket/)"),
    interval: Optional[int] = typer.Option(None, "--interval", "-i", help="Sync interval in seconds (0 = run once)"),
    delete: Optional[bool] = typer.Option(
        None, "--delete/--no-delete", help="Delete files in GCS not in local path (use with caution)"
    ),
    dry_run: Optional[bool] = typer.Option(None, "--dry-run/--no-dry-run", help="Compute plans without applying them"),
    allow_empty_source: Optional[bool] = typer.Option(
        None, "--allow-empty-source/--no-allow-empty-source",
        help="Allow --delete to empty a remote prefix when the local folder is empty",
    ),
    exclude: Optional[List[str]] = typer.Option(None, "--exclude", "-x", help="Glob pattern to skip. Repeatable."),
    credentials: Optional[Path] = typer.Option(None, "--credentials", help="Service account JSON key file"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Settings file"),
    workers: Optional[int] = typer.Option(None, "--workers", help="Pairs synced in parallel"),
    transfer_workers: Optional[int] = typer.Option(None, "--transfer-workers", help="Transfers in parallel per pair"),
    max_attempts: Optional[int] = typer.Option(None, "--max-attempts", help="Attempts per transfer"),
    compare: Optional[str] = typer.Option(None, "--compare", help="checksum or mtime"),
    log_dir: Optional[Path] = typer.Option(None, "--log-dir", help="Directory for log files"),
    health_file: Optional[Path] = typer.Option(None, "--health-file", help="Health status file"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """
    Sync every configured pair, once or every --interval seconds.
    """
    overrides = ConfigOverrides(
        pairs=tuple(pair or ()),
        local_path=local_path,
        gcs_bucket=gcs_bucket,
        interval=interval,
        delete=delete,
        dry_run=dry_run,
        allow_empty_source=allow_empty_source,
        exclude=tuple(exclude or ()),
        credentials=credentials,
        pair_workers=workers,
        transfer_workers=transfer_workers,
        max_attempts=max_attempts,
        compare=compare,
        log_dir=log_dir,
        health_file=health_file,
    )
    config = _load_config(overrides, config_file)
    logger = _configure_logging(config, verbose)
    logger.info(f"Using credentials: {config.credentials_path}")

    raise typer.Exit(code=_run_scheduler(config, logger))


@app.command()
def plan(
    pair: Optional[List[str]] = typer.Option(None, "--pair", "-p", help=PAIR_HELP),
    local_path: Optional[str] = typer.Option(None, "--local-path", help="Path to local folder to sync"),
    gcs_bucket: Optional[str] = typer.Option(None, "--gcs-bucket", help="GCS bucket path (e.g., gs://my-bucket/)"),
    delete: Optional[bool] = typer.Option(None, "--delete/--no-delete", help="Include deletions in the plan"),
    exclude: Optional[List[str]] = typer.Option(None, "--exclude", "-x", help="Glob pattern to skip. Repeatable."),
    credentials: Optional[Path] = typer.Option(None, "--credentials", help="Service account JSON key file"),
    config_file: Optional[Path] = typer.Option(None, "--config", "-c", help="Settings file"),
    compare: Optional[str] = typer.Option(None, "--compare", help="checksum or mtime"),
    log_dir: Optional[Path] = typer.Option(None, "--log-dir", help="Directory for log files"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """
    Show what one sync cycle would upload and delete, without changing anything.
    """
    overrides = ConfigOverrides(
        pairs=tuple(pair or ()),
        local_path=local_path,
        gcs_bucket=gcs_bucket,
        interval=0,
        delete=delete,
        dry_run=True,
        exclude=tuple(exclude or ()),
        credentials=credentials,
        compare=compare,
        log_dir=log_dir,
    )
    config = _load_config(overrides, config_file)
    # A plan must not overwrite the running service's health record
    config = replace(config, health_file=None)
    logger = _configure_logging(config, verbose)

    raise typer.Exit(code=_run_scheduler(config, logger))


@app.command()
def health(
    health_file: Path = typer.Option(Settings.HEALTH_FILE, "--health-file", help="Health status file"),
    max_age: Optional[int] = typer.Option(
        None, "--max-age", help="Seconds after which the last cycle counts as stale"
    ),
):
    """
    Exit 0 if the last sync cycle succeeded, 1 otherwise. For supervisor health checks.
    """
    healthy, message = check_health(health_file, max_age)
    if healthy:
        typer.secho(message, fg=typer.colors.GREEN)
        raise typer.Exit(code=0)
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


@app.command("validate-credentials")
def validate_credentials(
    path: Path = typer.Argument(..., help="Service account JSON key file"),
):
    """
    Check that a file is a service account JSON key.
    """
    try:
        credentials = load_service_account_file(path)
    except ConfigurationError as e:
        typer.secho(f"Error: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    typer.secho(f"Valid service account key for {credentials['client_email']}", fg=typer.colors.GREEN)


def main():
    app()


if __name__ == "__main__":
    app()
