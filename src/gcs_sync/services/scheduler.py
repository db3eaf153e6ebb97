"""Scheduler: runs every configured pair once or on a fixed interval."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from gcs_sync.config.settings import Settings
from gcs_sync.config.sync_config import SyncConfig
from gcs_sync.errors import AuthError, GcsSyncError
from gcs_sync.services.health import write_health
from gcs_sync.services.sync_job import SyncJob
from gcs_sync.services.sync_types import (
    CycleReport,
    ErrorKind,
    ErrorRecord,
    SyncOutcome,
    SyncPair,
    SyncStatus,
)
from gcs_sync.utils.logger_setup import ACTIVITY_LOGGER_NAME


class SchedulerState(str, Enum):
    """Lifecycle of the scheduler loop."""

    IDLE = "idle"
    RUNNING_CYCLE = "running_cycle"
    SLEEPING = "sleeping"
    STOPPED = "stopped"


def exit_code_for(report: Optional[CycleReport]) -> int:
    """0 when every pair succeeded, the sync-failure code otherwise."""
    if report is not None and report.succeeded:
        return Settings.EXIT_OK
    return Settings.EXIT_SYNC_FAILURE


class SyncScheduler:
    """
    Drives sync cycles over all configured pairs.

    Pairs run in a bounded pool; each pair's outcome comes back through its own
    future and results are merged in declaration order. A failing pair never
    stops its siblings. ``stop()`` (or a termination signal routed to it) is
    observed between transfers, before each pair starts and during the sleep.
    """

    def __init__(
        self,
        config: SyncConfig,
        store_factory: Callable[[SyncConfig], Any],
        stop_event: Optional[threading.Event] = None,
        logger_obj: Optional[logging.Logger] = None,
        activity_logger: Optional[logging.Logger] = None,
    ):
        """
        Args:
            config: Run configuration
            store_factory: Builds the remote store client; called again after a cycle
                in which every pair failed authentication
            stop_event: Shared cancellation flag
            logger_obj: Logger instance
            activity_logger: Logger for the append-only activity log
        """
        self.config = config
        self.store_factory = store_factory
        self.stop_event = stop_event or threading.Event()
        self.logger = logger_obj or logging.getLogger(__name__)
        self.activity = activity_logger or logging.getLogger(ACTIVITY_LOGGER_NAME)
        self.state = SchedulerState.IDLE
        self.cycle = 0
        self.last_report: Optional[CycleReport] = None
        self._store: Any = None

    def stop(self) -> None:
        """Request termination; takes effect at the next transfer, pair or sleep boundary."""
        if not self.stop_event.is_set():
            self.logger.info("Stop requested, finishing current work")
        self.stop_event.set()

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    def _get_store(self) -> Any:
        if self._store is None:
            self._store = self.store_factory(self.config)
        return self._store

    def _failed_outcome(self, pair: SyncPair, kind: ErrorKind, message: str) -> SyncOutcome:
        now = datetime.now(timezone.utc)
        return SyncOutcome(
            pair=pair,
            status=SyncStatus.FATAL_FAILURE,
            errors=(ErrorRecord(kind=kind, message=message),),
            started_at=now,
            finished_at=now,
            dry_run=self.config.dry_run,
        )

    def _run_pair(self, job: SyncJob, pair: SyncPair) -> SyncOutcome:
        if self.stopped:
            return self._failed_outcome(pair, ErrorKind.CANCELLED, "sync stopped before pair started")
        try:
            return job.run(pair)
        except Exception as exc:
            self.logger.error(f"Unexpected error syncing {pair.name}: {exc}", exc_info=True)
            return self._failed_outcome(pair, ErrorKind.PREFLIGHT, f"unexpected error: {exc}")

    def run_cycle(self) -> CycleReport:
        """Run every pair once and return the merged report."""
        self.cycle += 1
        self.state = SchedulerState.RUNNING_CYCLE
        started = datetime.now(timezone.utc)
        pairs = self.config.pairs
        self.activity.info(f"cycle={self.cycle} event=start pairs={len(pairs)}")

        try:
            store = self._get_store()
        except GcsSyncError as exc:
            # Credential refresh failures only fail this cycle
            kind = ErrorKind.AUTH if isinstance(exc, AuthError) else ErrorKind.CONFIGURATION
            self.logger.error(f"Cannot create storage client: {exc.message}")
            outcomes = [self._failed_outcome(pair, kind, exc.message) for pair in pairs]
        else:
            job = SyncJob(store, self.config, stop_event=self.stop_event)
            workers = max(1, min(self.config.pair_workers, len(pairs)))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="gcs-sync-pair") as pool:
                futures = [pool.submit(self._run_pair, job, pair) for pair in pairs]
                outcomes = [future.result() for future in futures]

        report = CycleReport(
            cycle=self.cycle,
            outcomes=tuple(outcomes),
            started_at=started,
            finished_at=datetime.now(timezone.utc),
        )
        self._record(report)

        if report.auth_failed:
            self.logger.error(
                "Authentication failed for every pair; credentials will be reloaded before the next cycle"
            )
            self._store = None

        self.last_report = report
        return report

    def _record(self, report: CycleReport) -> None:
        for outcome in report.outcomes:
            started = outcome.started_at.isoformat() if outcome.started_at else "-"
            self.activity.info(
                f"cycle={report.cycle} pair={outcome.pair.name} started={started} "
                f"status={outcome.status.value} uploaded={outcome.uploaded} deleted={outcome.deleted} "
                f"unchanged={outcome.unchanged} errors={len(outcome.errors)}"
                + (f" planned_uploads={outcome.planned_uploads} planned_deletes={outcome.planned_deletes} dry_run=true"
                   if outcome.dry_run else "")
            )
            for error in outcome.errors:
                self.activity.info(f"cycle={report.cycle} pair={outcome.pair.name} error={error}")

        failed = len(report.failed_pairs)
        self.activity.info(
            f"cycle={report.cycle} event=end status={'success' if report.succeeded else 'failure'} "
            f"pairs={len(report.outcomes)} failed={failed}"
        )

        if self.config.health_file is not None:
            write_health(self.config.health_file, report, self.logger, interval=self.config.interval)

    def run(self) -> int:
        """
        Run cycles until done.

        Interval 0 runs a single cycle. Otherwise cycles repeat, sleeping
        ``interval`` seconds after each one completes, until ``stop()`` or
        ``max_cycles``.

        Returns:
            Process exit code derived from the last completed cycle
        """
        if self.config.one_shot:
            self.logger.info("Running a single sync cycle")
        else:
            self.logger.info(f"Starting continuous sync every {self.config.interval} seconds")

        try:
            while not self.stopped:
                report = self.run_cycle()

                if self.config.one_shot:
                    break
                if self.config.max_cycles is not None and self.cycle >= self.config.max_cycles:
                    break
                if self.stopped:
                    break

                if not report.succeeded:
                    self.logger.warning(
                        f"Cycle {report.cycle} had failures: {', '.join(report.failed_pairs)}"
                    )

                self.state = SchedulerState.SLEEPING
                self.logger.debug(f"Sleeping {self.config.interval}s before next cycle")
                if self.stop_event.wait(self.config.interval):
                    break
        finally:
            self.state = SchedulerState.STOPPED

        return exit_code_for(self.last_report)
