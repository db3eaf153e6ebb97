"""Application-wide settings and defaults."""

from pathlib import Path


class Settings:
    """Centralized default settings."""

    # Service paths
    CONFIG_DIR = Path("/etc/gcs-sync")
    CONFIG_FILE = CONFIG_DIR / "config.conf"
    LOG_DIR = Path("/var/log/gcs-sync")
    HEALTH_FILE = Path("/var/lib/gcs-sync/health.json")

    # Run mode
    DEFAULT_INTERVAL = 0  # seconds, 0 = run once

    # Concurrency
    PAIR_WORKERS = 2
    TRANSFER_WORKERS = 8

    # Retry settings
    MAX_ATTEMPTS = 3
    RETRY_BASE_DELAY = 2
    RETRY_MAX_DELAY = 30

    # Comparison
    COMPARE_MODES = ("checksum", "mtime")
    DEFAULT_COMPARE = "checksum"
    MTIME_TOLERANCE_SECONDS = 2.0

    # Health check: unhealthy if no cycle finished within interval * factor + grace
    HEALTH_STALE_FACTOR = 3
    HEALTH_GRACE_SECONDS = 300

    # Process exit codes
    EXIT_OK = 0
    EXIT_CONFIG_ERROR = 1
    EXIT_SYNC_FAILURE = 2

    @classmethod
    def health_max_age(cls, interval: int) -> int:
        """Age after which a health file counts as stale."""
        return interval * cls.HEALTH_STALE_FACTOR + cls.HEALTH_GRACE_SECONDS
