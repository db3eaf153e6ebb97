"""Typed contracts for local-to-cloud synchronization flows."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from gcs_sync.errors import ConfigurationError

GCS_SCHEME = "gs://"


class SyncStatus(str, Enum):
    """Per-pair result of one sync cycle."""

    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    FATAL_FAILURE = "fatal_failure"


class ErrorKind(str, Enum):
    """Where in a sync job an error was raised."""

    CONFIGURATION = "configuration"
    PREFLIGHT = "preflight"
    TRANSFER = "transfer"
    LOCAL_IO = "local_io"
    AUTH = "auth"
    SAFETY = "safety"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class RemoteDestination:
    """A bucket plus an optional key prefix."""

    bucket: str
    prefix: str = ""

    @classmethod
    def parse(cls, uri: str) -> "RemoteDestination":
        """Parse ``gs://bucket[/prefix]`` into a destination."""
        if not uri or not uri.startswith(GCS_SCHEME):
            raise ConfigurationError(f"Destination must start with {GCS_SCHEME}: {uri!r}")

        bucket, _, prefix = uri[len(GCS_SCHEME):].partition("/")
        if not bucket:
            raise ConfigurationError(f"Destination has no bucket name: {uri!r}")

        prefix = "/".join(part for part in prefix.split("/") if part)
        return cls(bucket=bucket, prefix=prefix)

    @property
    def uri(self) -> str:
        if self.prefix:
            return f"{GCS_SCHEME}{self.bucket}/{self.prefix}"
        return f"{GCS_SCHEME}{self.bucket}"

    @property
    def list_prefix(self) -> str:
        """Prefix used for listing, with trailing slash so ``a/b`` does not match ``a/bc``."""
        return f"{self.prefix}/" if self.prefix else ""

    def key_for(self, relative_key: str) -> str:
        """Absolute object name for a key relative to this prefix."""
        return f"{self.list_prefix}{relative_key}"

    def relative_key(self, object_name: str) -> str:
        return object_name[len(self.list_prefix):]

    def __str__(self) -> str:
        return self.uri


@dataclass(frozen=True)
class SyncPair:
    """One local directory bound to one remote destination."""

    local_path: Path
    destination: RemoteDestination
    delete_extraneous: bool = False

    @property
    def name(self) -> str:
        return f"{self.local_path} -> {self.destination.uri}"


@dataclass(frozen=True)
class LocalFile:
    """A regular file found while scanning a local tree."""

    key: str
    path: Path
    size: int
    mtime: float
    md5: Optional[str] = None


@dataclass(frozen=True)
class RemoteObject:
    """An object found under a remote prefix."""

    key: str
    size: int
    md5: Optional[str] = None
    mtime: Optional[float] = None
    updated: Optional[datetime] = None


LocalFileSet = Mapping[str, LocalFile]
RemoteObjectSet = Mapping[str, RemoteObject]


@dataclass(frozen=True)
class ReconcilePlan:
    """Operations that turn a remote object set into a mirror of a local tree."""

    to_upload: tuple[str, ...] = ()
    to_delete: tuple[str, ...] = ()
    unchanged: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.to_upload and not self.to_delete

    def would_empty_prefix(self, local: LocalFileSet, remote: RemoteObjectSet) -> bool:
        """True when applying this plan deletes every remote object and uploads nothing."""
        return not local and bool(remote) and len(self.to_delete) == len(remote)


@dataclass(frozen=True)
class ErrorRecord:
    """One failure recorded during a sync job."""

    kind: ErrorKind
    message: str
    key: Optional[str] = None

    def __str__(self) -> str:
        if self.key:
            return f"[{self.kind.value}] {self.key}: {self.message}"
        return f"[{self.kind.value}] {self.message}"


@dataclass(frozen=True)
class SyncOutcome:
    """Result report for one pair in one cycle."""

    pair: SyncPair
    status: SyncStatus
    uploaded: int = 0
    deleted: int = 0
    unchanged: int = 0
    errors: tuple[ErrorRecord, ...] = ()
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    dry_run: bool = False
    planned_uploads: int = 0
    planned_deletes: int = 0

    @property
    def ok(self) -> bool:
        return self.status is SyncStatus.SUCCESS

    @property
    def auth_failed(self) -> bool:
        return self.status is SyncStatus.FATAL_FAILURE and any(
            error.kind is ErrorKind.AUTH for error in self.errors
        )


@dataclass(frozen=True)
class CycleReport:
    """All pair outcomes of one cycle, in declaration order."""

    cycle: int
    outcomes: tuple[SyncOutcome, ...] = field(default_factory=tuple)
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def succeeded(self) -> bool:
        return all(outcome.ok for outcome in self.outcomes)

    @property
    def auth_failed(self) -> bool:
        """Every pair failed because credentials were rejected."""
        return bool(self.outcomes) and all(outcome.auth_failed for outcome in self.outcomes)

    @property
    def failed_pairs(self) -> list[str]:
        return [outcome.pair.name for outcome in self.outcomes if not outcome.ok]
