"""Configuration management for gcs-sync."""

from .resolver import ConfigOverrides, resolve_config
from .settings import Settings
from .sync_config import SyncConfig

__all__ = ["Settings", "SyncConfig", "ConfigOverrides", "resolve_config"]
