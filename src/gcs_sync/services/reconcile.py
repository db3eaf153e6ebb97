"""Diff engine: computes which keys to upload or delete for one pair."""

from __future__ import annotations

from typing import Optional

from gcs_sync.services.sync_types import (
    LocalFile,
    LocalFileSet,
    ReconcilePlan,
    RemoteObject,
    RemoteObjectSet,
)

DEFAULT_MTIME_TOLERANCE = 2.0


def is_valid_key(key: str) -> bool:
    """A relative key that maps back to a path inside the local root."""
    return bool(key) and not key.startswith("/") and ".." not in key.split("/")


def _validate_keys(entries, label: str) -> None:
    for key, entry in entries.items():
        if not is_valid_key(key):
            raise ValueError(f"Malformed {label} key: {key!r}")
        if entry.key != key:
            raise ValueError(f"{label} entry key {entry.key!r} does not match mapping key {key!r}")


def needs_upload(
    local: LocalFile,
    remote: Optional[RemoteObject],
    mtime_tolerance: float = DEFAULT_MTIME_TOLERANCE,
) -> bool:
    """
    Decide whether a local file differs from its remote counterpart.

    Checks, in order: presence, size, MD5 digest (when both sides have one),
    the file mtime recorded on upload, then the server ``updated`` timestamp.
    Mtime checks allow ``mtime_tolerance`` seconds of clock skew.
    """
    if remote is None:
        return True
    if local.size != remote.size:
        return True
    if local.md5 and remote.md5:
        return local.md5 != remote.md5
    if remote.mtime is not None:
        return abs(local.mtime - remote.mtime) > mtime_tolerance
    if remote.updated is not None:
        return local.mtime > remote.updated.timestamp() + mtime_tolerance
    # Same size and nothing else to compare against
    return False


def compute_plan(
    local: LocalFileSet,
    remote: RemoteObjectSet,
    delete_extraneous: bool,
    mtime_tolerance: float = DEFAULT_MTIME_TOLERANCE,
) -> ReconcilePlan:
    """
    Compare a local tree snapshot with a remote prefix snapshot.

    Args:
        local: Relative key -> LocalFile
        remote: Relative key -> RemoteObject
        delete_extraneous: Whether remote keys missing locally are deleted
        mtime_tolerance: Seconds of clock skew tolerated when comparing mtimes

    Returns:
        ReconcilePlan with sorted upload and delete keys
    """
    _validate_keys(local, "local")
    _validate_keys(remote, "remote")

    to_upload = sorted(
        key for key, entry in local.items()
        if needs_upload(entry, remote.get(key), mtime_tolerance)
    )

    to_delete: list[str] = []
    if delete_extraneous:
        to_delete = sorted(key for key in remote if key not in local)

    return ReconcilePlan(
        to_upload=tuple(to_upload),
        to_delete=tuple(to_delete),
        unchanged=len(local) - len(to_upload),
    )
