# tests/conftest.py
import logging
import sys
from pathlib import Path

import pytest

# Make ``gcs_sync`` importable without installing, and ``tests.fixtures`` from the repo root
ROOT = Path(__file__).resolve().parents[1]
for path in (ROOT, ROOT / "src"):
    if str(path) not in sys.path:
        sys.path.insert(0, str(path))

from tests.fixtures.cloud_fixtures import (  # noqa: E402,F401
    credentials_file,
    fake_store,
    make_config,
    mock_gcs_client,
)


@pytest.fixture(autouse=True)
def reset_gcs_sync_loggers():
    """Drop handlers added by setup_logging so each test starts unconfigured."""
    yield
    for name in ("gcs_sync", "gcs_sync.activity"):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.setLevel(logging.NOTSET)


@pytest.fixture
def local_tree(tmp_path):
    """
    Factory writing ``{relative_path: bytes}`` under a fresh directory.

    Usage:
        root = local_tree({"a.txt": b"x" * 10, "sub/b.txt": b"y"})
    """
    counter = {"n": 0}

    def _make(files, name=None):
        counter["n"] += 1
        root = tmp_path / (name or f"src{counter['n']}")
        root.mkdir(parents=True, exist_ok=True)
        for rel, data in files.items():
            path = root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        return root

    return _make
