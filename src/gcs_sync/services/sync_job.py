"""Sync job: mirrors one local directory into one remote prefix."""

from __future__ import annotations

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import backoff

from gcs_sync.config.sync_config import SyncConfig
from gcs_sync.errors import (
    AuthError,
    GcsSyncError,
    PreflightError,
    TransientStorageError,
    categorize_error,
)
from gcs_sync.services.local_scan import attach_digests, scan_local_tree
from gcs_sync.services.reconcile import compute_plan
from gcs_sync.services.sync_types import (
    ErrorKind,
    ErrorRecord,
    ReconcilePlan,
    SyncOutcome,
    SyncPair,
    SyncStatus,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SyncJob:
    """
    Runs pre-flight, bootstrap, diff and apply for a single pair.

    Every failure is absorbed into the returned SyncOutcome: pre-flight and
    planning failures are fatal for the pair, individual transfer failures
    make the outcome a partial failure while the remaining keys still run.
    """

    def __init__(
        self,
        store: Any,
        config: SyncConfig,
        stop_event: Optional[threading.Event] = None,
        logger_obj: Optional[logging.Logger] = None,
    ):
        """
        Args:
            store: Remote store client (probe/list_objects/put/delete/bootstrap_prefix)
            config: Run configuration
            stop_event: Set to request cooperative cancellation
            logger_obj: Logger instance
        """
        self.store = store
        self.config = config
        self.stop_event = stop_event or threading.Event()
        self.logger = logger_obj or logging.getLogger(__name__)

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    def _backoff_handler(self, details):
        """Handler for logging backoff attempts with error categorization."""
        exception = details["exception"]
        self.logger.warning(
            f"Backing off {details['wait']:.1f}s after {categorize_error(exception).value} error "
            f"(attempt {details['tries']}/{self.config.max_attempts}): {exception}"
        )

    def _with_retry(self, func: Callable[..., Any], *args) -> Any:
        """Call ``func`` retrying transient storage errors with exponential backoff."""
        retrying = backoff.on_exception(
            backoff.expo,
            TransientStorageError,
            max_tries=self.config.max_attempts,
            on_backoff=self._backoff_handler,
            giveup=lambda _exc: self.stopped,
            jitter=backoff.full_jitter,
            factor=self.config.retry_base_delay,
            max_value=self.config.retry_max_delay,
        )(func)
        return retrying(*args)

    def _fatal(self, pair: SyncPair, started: datetime, kind: ErrorKind, message: str) -> SyncOutcome:
        self.logger.error(f"Sync failed for {pair.name}: {message}")
        return SyncOutcome(
            pair=pair,
            status=SyncStatus.FATAL_FAILURE,
            errors=(ErrorRecord(kind=kind, message=message),),
            started_at=started,
            finished_at=_now(),
            dry_run=self.config.dry_run,
        )

    def _check_local_path(self, pair: SyncPair) -> None:
        path = pair.local_path
        if not path.exists():
            raise PreflightError(f"Local path {path} does not exist")
        if not path.is_dir():
            raise PreflightError(f"Local path {path} is not a directory")
        if not os.access(path, os.R_OK | os.X_OK):
            raise PreflightError(f"Local path {path} is not readable")

    def run(self, pair: SyncPair) -> SyncOutcome:
        """
        Mirror one pair and report the result.

        Args:
            pair: The local directory and remote destination to sync

        Returns:
            SyncOutcome describing what was uploaded, deleted and what failed
        """
        started = _now()
        destination = pair.destination
        self.logger.info(f"Starting sync from {pair.local_path} to {destination.uri}")

        scan_errors: list[tuple[str, str]] = []
        try:
            self._check_local_path(pair)

            if not self._with_retry(self.store.probe, destination):
                if self.config.dry_run:
                    self.logger.info(f"Remote prefix {destination.uri} is empty; would bootstrap it")
                else:
                    self.logger.info(f"Remote prefix {destination.uri} not found, bootstrapping")
                    self._with_retry(self.store.bootstrap_prefix, destination)

            remote = self._with_retry(self.store.list_objects, destination)
            local = scan_local_tree(pair.local_path, self.config.exclude, scan_errors)
            if self.config.use_checksums:
                local = attach_digests(local, remote)

            plan = compute_plan(local, remote, pair.delete_extraneous, self.config.mtime_tolerance)
        except AuthError as exc:
            return self._fatal(pair, started, ErrorKind.AUTH, f"Authentication failed: {exc.message}")
        except GcsSyncError as exc:
            return self._fatal(pair, started, ErrorKind.PREFLIGHT, exc.message)

        if pair.delete_extraneous and plan.would_empty_prefix(local, remote) and not self.config.allow_empty_source:
            return self._fatal(
                pair, started, ErrorKind.SAFETY,
                f"Refusing to delete all {len(remote)} objects under {destination.uri}: "
                f"local directory is empty (pass --allow-empty-source to permit this)",
            )

        errors = [
            ErrorRecord(kind=ErrorKind.LOCAL_IO, key=key, message=message)
            for key, message in scan_errors
        ]

        if scan_errors and plan.to_delete:
            # Keys under an unreadable directory look absent locally
            self.logger.warning(
                f"Local scan of {pair.local_path} was incomplete; skipping {len(plan.to_delete)} deletions"
            )
            errors.extend(
                ErrorRecord(kind=ErrorKind.SAFETY, key=key, message="deletion skipped: local scan incomplete")
                for key in plan.to_delete
            )
            plan = replace(plan, to_delete=())

        self.logger.info(
            f"Plan for {destination.uri}: {len(plan.to_upload)} to upload, "
            f"{len(plan.to_delete)} to delete, {plan.unchanged} unchanged"
        )
        if pair.delete_extraneous and plan.to_delete:
            self.logger.warning(
                f"Deleting files in {destination.uri} not in {pair.local_path}"
            )

        if self.config.dry_run:
            self._log_plan(pair, plan)
            return self._finish(pair, started, plan, 0, 0, errors)

        uploaded, upload_errors = self._apply(
            plan.to_upload, lambda key: self.store.put(local[key], destination, key), "upload"
        )
        errors.extend(upload_errors)

        deleted = 0
        if plan.to_delete:
            if self.stopped:
                errors.extend(
                    ErrorRecord(kind=ErrorKind.CANCELLED, key=key, message="sync stopped before delete")
                    for key in plan.to_delete
                )
            else:
                deleted, delete_errors = self._apply(
                    plan.to_delete, lambda key: self.store.delete(destination, key), "delete"
                )
                errors.extend(delete_errors)

        return self._finish(pair, started, plan, uploaded, deleted, errors)

    def _finish(
        self,
        pair: SyncPair,
        started: datetime,
        plan: ReconcilePlan,
        uploaded: int,
        deleted: int,
        errors: list[ErrorRecord],
    ) -> SyncOutcome:
        status = SyncStatus.PARTIAL_FAILURE if errors else SyncStatus.SUCCESS
        if errors:
            self.logger.warning(f"Sync of {pair.name} finished with {len(errors)} errors")
        else:
            self.logger.info(f"Sync of {pair.name} completed successfully")

        return SyncOutcome(
            pair=pair,
            status=status,
            uploaded=uploaded,
            deleted=deleted,
            unchanged=plan.unchanged,
            errors=tuple(errors),
            started_at=started,
            finished_at=_now(),
            dry_run=self.config.dry_run,
            planned_uploads=len(plan.to_upload),
            planned_deletes=len(plan.to_delete),
        )

    def _log_plan(self, pair: SyncPair, plan: ReconcilePlan) -> None:
        for key in plan.to_upload:
            self.logger.info(f"[dry-run] would upload {key} -> {pair.destination.key_for(key)}")
        for key in plan.to_delete:
            self.logger.info(f"[dry-run] would delete {pair.destination.key_for(key)}")

    def _apply(
        self,
        keys: tuple[str, ...],
        operation: Callable[[str], None],
        label: str,
    ) -> tuple[int, list[ErrorRecord]]:
        """Run ``operation`` for every key in a bounded pool; returns (successes, errors)."""
        if not keys:
            return 0, []

        workers = max(1, min(self.config.transfer_workers, len(keys)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"gcs-sync-{label}") as pool:
            futures = [pool.submit(self._transfer, key, operation, label) for key in keys]
            results = [future.result() for future in futures]

        errors = [record for record in results if record is not None]
        return len(keys) - len(errors), errors

    def _transfer(self, key: str, operation: Callable[[str], None], label: str) -> Optional[ErrorRecord]:
        if self.stopped:
            return ErrorRecord(kind=ErrorKind.CANCELLED, key=key, message=f"sync stopped before {label}")

        try:
            self._with_retry(operation, key)
            return None
        except AuthError as exc:
            self.logger.error(f"Error during {label} of {key}: {exc}")
            return ErrorRecord(kind=ErrorKind.AUTH, key=key, message=exc.message)
        except GcsSyncError as exc:
            self.logger.error(f"Error during {label} of {key}: {exc}")
            return ErrorRecord(kind=ErrorKind.TRANSFER, key=key, message=exc.message)
        except Exception as exc:
            self.logger.error(f"Unexpected error during {label} of {key}: {exc}", exc_info=True)
            return ErrorRecord(kind=ErrorKind.TRANSFER, key=key, message=str(exc))
