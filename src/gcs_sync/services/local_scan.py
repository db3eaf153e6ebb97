"""Local directory traversal and digest helpers."""

from __future__ import annotations

import base64
import fnmatch
import hashlib
import logging
import os
import stat
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Optional

from gcs_sync.services.sync_types import LocalFile, LocalFileSet, RemoteObjectSet

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1 MiB


def is_excluded(key: str, patterns: Iterable[str]) -> bool:
    """Match glob patterns against the whole relative key and each path component."""
    parts = key.split("/")
    for pattern in patterns:
        if fnmatch.fnmatchcase(key, pattern):
            return True
        if any(fnmatch.fnmatchcase(part, pattern) for part in parts):
            return True
    return False


def scan_local_tree(
    root: Path,
    exclude: Iterable[str] = (),
    errors: Optional[list[tuple[str, str]]] = None,
) -> dict[str, LocalFile]:
    """
    Walk a directory tree and snapshot every regular file.

    Args:
        root: Directory to scan
        exclude: Glob patterns for keys to skip
        errors: Optional list collecting (key, message) for unreadable entries

    Returns:
        Dictionary mapping POSIX relative key to LocalFile
    """
    exclude = tuple(exclude)
    files: dict[str, LocalFile] = {}

    def _on_walk_error(exc: OSError) -> None:
        key = Path(exc.filename).relative_to(root).as_posix() if exc.filename else str(root)
        logger.warning(f"Cannot read directory {exc.filename}: {exc}")
        if errors is not None:
            errors.append((key, f"cannot read directory: {exc.strerror or exc}"))

    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_walk_error):
        current = Path(dirpath)
        rel_dir = current.relative_to(root).as_posix()

        # Prune excluded directories in place so os.walk skips them
        dirnames[:] = sorted(
            d for d in dirnames
            if not is_excluded(d if rel_dir == "." else f"{rel_dir}/{d}", exclude)
        )

        for filename in sorted(filenames):
            key = filename if rel_dir == "." else f"{rel_dir}/{filename}"
            if is_excluded(key, exclude):
                continue

            path = current / filename
            try:
                st = path.stat()
            except OSError as exc:
                logger.warning(f"Cannot stat {path}: {exc}")
                if errors is not None:
                    errors.append((key, f"cannot stat file: {exc.strerror or exc}"))
                continue

            if not stat.S_ISREG(st.st_mode):
                continue

            files[key] = LocalFile(key=key, path=path, size=st.st_size, mtime=st.st_mtime)

    logger.debug(f"Scanned {len(files)} files under {root}")
    return files


def file_md5(path: Path) -> str:
    """Base64-encoded MD5 digest, the format GCS reports in ``md5_hash``."""
    digest = hashlib.md5()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            digest.update(chunk)
    return base64.b64encode(digest.digest()).decode("ascii")


def attach_digests(local: LocalFileSet, remote: RemoteObjectSet) -> dict[str, LocalFile]:
    """
    Compute MD5 digests only where size alone cannot decide.

    A digest is needed when the remote object exists, has the same size and
    carries an MD5 of its own. Everything else is decided without reading the file.
    """
    result: dict[str, LocalFile] = {}
    hashed = 0

    for key, entry in local.items():
        remote_obj = remote.get(key)
        if remote_obj is None or remote_obj.md5 is None or remote_obj.size != entry.size:
            result[key] = entry
            continue

        try:
            result[key] = replace(entry, md5=file_md5(entry.path))
            hashed += 1
        except OSError as exc:
            logger.debug(f"Could not hash {entry.path}, falling back to mtime: {exc}")
            result[key] = entry

    logger.debug(f"Computed {hashed} local digests")
    return result
