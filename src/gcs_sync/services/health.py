"""Health file written after every cycle, read by the host supervisor's check."""

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from gcs_sync.config.settings import Settings
from gcs_sync.services.sync_types import CycleReport

STATUS_HEALTHY = "healthy"
STATUS_UNHEALTHY = "unhealthy"


def write_health(
    path: Path,
    report: CycleReport,
    logger_obj: Optional[logging.Logger] = None,
    interval: int = 0,
) -> bool:
    """
    Record the result of the last cycle.

    ``interval`` is stored so the checker can tell a stalled loop from a slow one.

    Returns:
        True if written, False otherwise (a health file is never worth failing a cycle over)
    """
    logger = logger_obj or logging.getLogger(__name__)
    payload: Dict[str, Any] = {
        "status": STATUS_HEALTHY if report.succeeded else STATUS_UNHEALTHY,
        "cycle": report.cycle,
        "finished_at": time.time(),
        "failed_pairs": report.failed_pairs,
        "auth_failed": report.auth_failed,
        "pid": os.getpid(),
        "interval": interval,
    }

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(payload, indent=4))
        os.replace(tmp_path, path)
        logger.debug(f"Health file updated: {path}")
        return True
    except OSError as exc:
        logger.warning(f"Could not write health file {path}: {exc}")
        return False


def read_health(path: Path) -> Optional[Dict[str, Any]]:
    """Load the health file, or None if it is missing or unreadable."""
    try:
        return json.loads(Path(path).read_text())
    except (OSError, json.JSONDecodeError):
        return None


def check_health(path: Path, max_age: Optional[float] = None) -> Tuple[bool, str]:
    """
    Decide whether the service is healthy.

    Args:
        path: Health file path
        max_age: Seconds after which the last record counts as stale. When None, a
            continuous service gets a limit derived from its recorded interval and
            a one-shot run is never stale

    Returns:
        (healthy, human readable message)
    """
    data = read_health(path)
    if data is None:
        return False, f"No readable health file at {path}"

    finished_at = data.get("finished_at")
    interval = data.get("interval")
    if max_age is None and isinstance(interval, int) and interval > 0:
        max_age = Settings.health_max_age(interval)

    if max_age is not None:
        if not isinstance(finished_at, (int, float)):
            return False, "Health file has no completion time"
        age = time.time() - finished_at
        if age > max_age:
            return False, f"Last cycle finished {age:.0f}s ago (limit {max_age:.0f}s)"

    if data.get("status") != STATUS_HEALTHY:
        failed = ", ".join(data.get("failed_pairs") or []) or "unknown pairs"
        return False, f"Cycle {data.get('cycle')} failed for: {failed}"

    return True, f"Cycle {data.get('cycle')} succeeded"
