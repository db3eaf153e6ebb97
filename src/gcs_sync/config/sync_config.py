"""Immutable run configuration built once at startup."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from gcs_sync.config.settings import Settings
from gcs_sync.services.sync_types import SyncPair


@dataclass(frozen=True)
class SyncConfig:
    """Everything the scheduler and sync jobs need, passed explicitly."""

    pairs: tuple[SyncPair, ...]
    credentials_path: Optional[Path] = None
    interval: int = Settings.DEFAULT_INTERVAL
    dry_run: bool = False
    allow_empty_source: bool = False
    exclude: tuple[str, ...] = ()
    pair_workers: int = Settings.PAIR_WORKERS
    transfer_workers: int = Settings.TRANSFER_WORKERS
    max_attempts: int = Settings.MAX_ATTEMPTS
    retry_base_delay: float = Settings.RETRY_BASE_DELAY
    retry_max_delay: float = Settings.RETRY_MAX_DELAY
    compare: str = Settings.DEFAULT_COMPARE
    mtime_tolerance: float = Settings.MTIME_TOLERANCE_SECONDS
    log_dir: Path = Settings.LOG_DIR
    health_file: Optional[Path] = Settings.HEALTH_FILE
    max_cycles: Optional[int] = field(default=None, compare=False)

    @property
    def one_shot(self) -> bool:
        return self.interval == 0

    @property
    def use_checksums(self) -> bool:
        return self.compare == "checksum"
