"""Tests for SyncJob: pre-flight, bootstrap, diff and apply for one pair."""

import os
import threading

import pytest

from gcs_sync.errors import AuthError, PreflightError, TransferError, TransientStorageError
from gcs_sync.services.sync_job import SyncJob
from gcs_sync.services.sync_types import ErrorKind, RemoteDestination, SyncPair, SyncStatus
from tests.fixtures.cloud_fixtures import TEST_BUCKET

DEST = RemoteDestination(TEST_BUCKET, "backup")


def make_pair(root, delete=False, destination=DEST):
    return SyncPair(local_path=root, destination=destination, delete_extraneous=delete)


def walk_with_unreadable(root, dirname):
    """os.walk replacement that reports root/dirname as unreadable instead of descending."""
    real_walk = os.walk

    def _walk(top, onerror=None, **kwargs):
        for dirpath, dirnames, filenames in real_walk(top, onerror=onerror, **kwargs):
            if dirname in dirnames:
                dirnames.remove(dirname)
                onerror(PermissionError(13, "Permission denied", str(root / dirname)))
            yield dirpath, dirnames, filenames

    return _walk


class TestSyncJobRun:
    def test_uploads_new_files(self, fake_store, make_config, local_tree):
        root = local_tree({"a.txt": b"a" * 10, "b.txt": b"b" * 20})
        pair = make_pair(root)

        outcome = SyncJob(fake_store, make_config(pair)).run(pair)

        assert outcome.status is SyncStatus.SUCCESS
        assert outcome.uploaded == 2
        assert outcome.deleted == 0
        assert fake_store.keys(DEST) == ["a.txt", "b.txt"]
        assert fake_store.data(DEST, "b.txt") == b"b" * 20

    def test_deletes_stale_object_with_delete(self, fake_store, make_config, local_tree):
        root = local_tree({"a.txt": b"a"})
        fake_store.seed(DEST, "a.txt", b"a")
        fake_store.seed(DEST, "stale.txt", b"old")
        pair = make_pair(root, delete=True)

        outcome = SyncJob(fake_store, make_config(pair)).run(pair)

        assert outcome.ok
        assert outcome.deleted == 1
        assert outcome.unchanged == 1
        assert fake_store.keys(DEST) == ["a.txt"]

    def test_keeps_stale_object_without_delete(self, fake_store, make_config, local_tree):
        root = local_tree({"a.txt": b"a"})
        fake_store.seed(DEST, "stale.txt", b"old")
        pair = make_pair(root)

        outcome = SyncJob(fake_store, make_config(pair)).run(pair)

        assert outcome.ok
        assert fake_store.keys(DEST) == ["a.txt", "stale.txt"]

    def test_second_run_is_a_no_op(self, fake_store, make_config, local_tree):
        root = local_tree({"a.txt": b"a" * 10, "sub/b.txt": b"b" * 20})
        pair = make_pair(root, delete=True)
        job = SyncJob(fake_store, make_config(pair))

        job.run(pair)
        second = job.run(pair)

        assert second.ok
        assert second.planned_uploads == 0
        assert second.planned_deletes == 0
        assert second.unchanged == 2

    def test_second_run_is_a_no_op_in_mtime_mode(self, fake_store, make_config, local_tree):
        root = local_tree({"a.txt": b"a" * 10})
        pair = make_pair(root)
        job = SyncJob(fake_store, make_config(pair, compare="mtime"))

        job.run(pair)
        assert job.run(pair).planned_uploads == 0

    def test_changed_content_same_size_is_uploaded(self, fake_store, make_config, local_tree):
        root = local_tree({"a.txt": b"new!"})
        fake_store.seed(DEST, "a.txt", b"old!")
        pair = make_pair(root)

        outcome = SyncJob(fake_store, make_config(pair)).run(pair)

        assert outcome.uploaded == 1
        assert fake_store.data(DEST, "a.txt") == b"new!"

    def test_bootstraps_empty_prefix(self, fake_store, make_config, local_tree):
        pair = make_pair(local_tree({}))

        outcome = SyncJob(fake_store, make_config(pair)).run(pair)

        assert outcome.ok
        assert fake_store.ops("bootstrap") == [DEST.uri]
        assert fake_store.list_objects(DEST) == {}

    def test_bootstrap_failure_is_fatal(self, fake_store, make_config, local_tree):
        fake_store.bootstrap_error = PreflightError("Cannot bootstrap: denied")
        pair = make_pair(local_tree({"a.txt": b"a"}))

        outcome = SyncJob(fake_store, make_config(pair)).run(pair)

        assert outcome.status is SyncStatus.FATAL_FAILURE
        assert outcome.errors[0].kind is ErrorKind.PREFLIGHT
        assert fake_store.ops("put") == []

    def test_missing_local_path_is_fatal(self, fake_store, make_config, tmp_path):
        pair = make_pair(tmp_path / "missing")

        outcome = SyncJob(fake_store, make_config(pair)).run(pair)

        assert outcome.status is SyncStatus.FATAL_FAILURE
        assert "does not exist" in outcome.errors[0].message
        assert fake_store.calls == []

    def test_local_path_that_is_a_file_is_fatal(self, fake_store, make_config, local_tree):
        root = local_tree({"f.txt": b"x"})
        pair = make_pair(root / "f.txt")

        outcome = SyncJob(fake_store, make_config(pair)).run(pair)

        assert outcome.status is SyncStatus.FATAL_FAILURE
        assert "not a directory" in outcome.errors[0].message

    def test_missing_bucket_is_fatal(self, fake_store, make_config, local_tree):
        pair = make_pair(local_tree({"a.txt": b"a"}), destination=RemoteDestination("nope"))

        outcome = SyncJob(fake_store, make_config(pair)).run(pair)

        assert outcome.status is SyncStatus.FATAL_FAILURE
        assert "does not exist" in outcome.errors[0].message

    def test_auth_failure_is_fatal_and_flagged(self, fake_store, make_config, local_tree):
        fake_store.probe_error = AuthError("401 Unauthorized")
        pair = make_pair(local_tree({"a.txt": b"a"}))

        outcome = SyncJob(fake_store, make_config(pair)).run(pair)

        assert outcome.auth_failed
        assert outcome.errors[0].kind is ErrorKind.AUTH

    def test_transient_prefix_check_is_retried(self, fake_store, make_config, local_tree):
        fake_store.fail("probe", DEST.uri, TransientStorageError("503"))
        pair = make_pair(local_tree({"a.txt": b"a"}))

        outcome = SyncJob(fake_store, make_config(pair)).run(pair)

        assert outcome.ok
        assert len(fake_store.ops("probe")) == 2


class TestTransfers:
    def test_transient_failure_retried_then_succeeds(self, fake_store, make_config, local_tree):
        fake_store.fail("put", "a.txt", TransientStorageError("503"), TransientStorageError("429"))
        pair = make_pair(local_tree({"a.txt": b"a"}))

        outcome = SyncJob(fake_store, make_config(pair, max_attempts=3)).run(pair)

        assert outcome.ok
        assert fake_store.ops("put") == ["a.txt"] * 3

    def test_retries_exhausted_is_partial_failure(self, fake_store, make_config, local_tree):
        fake_store.fail("put", "bad.txt", *[TransientStorageError("503")] * 5)
        pair = make_pair(local_tree({"bad.txt": b"x", "good.txt": b"y"}))

        outcome = SyncJob(fake_store, make_config(pair, max_attempts=2)).run(pair)

        assert outcome.status is SyncStatus.PARTIAL_FAILURE
        assert outcome.uploaded == 1
        assert [e.key for e in outcome.errors] == ["bad.txt"]
        assert fake_store.ops("put").count("bad.txt") == 2
        assert fake_store.keys(DEST) == ["good.txt"]

    def test_permanent_failure_not_retried(self, fake_store, make_config, local_tree):
        fake_store.fail("put", "a.txt", TransferError("400 Bad Request", key="a.txt"))
        pair = make_pair(local_tree({"a.txt": b"a"}))

        outcome = SyncJob(fake_store, make_config(pair)).run(pair)

        assert outcome.status is SyncStatus.PARTIAL_FAILURE
        assert outcome.errors[0].kind is ErrorKind.TRANSFER
        assert fake_store.ops("put") == ["a.txt"]

    def test_unexpected_exception_recorded(self, fake_store, make_config, local_tree):
        fake_store.fail("delete", "old.txt", RuntimeError("boom"))
        fake_store.seed(DEST, "old.txt", b"o")
        pair = make_pair(local_tree({"a.txt": b"a"}), delete=True)

        outcome = SyncJob(fake_store, make_config(pair)).run(pair)

        assert outcome.status is SyncStatus.PARTIAL_FAILURE
        assert outcome.uploaded == 1
        assert "boom" in outcome.errors[0].message

    def test_uploads_happen_before_deletes(self, fake_store, make_config, local_tree):
        fake_store.seed(DEST, "old.txt", b"o")
        pair = make_pair(local_tree({"new1.txt": b"1", "new2.txt": b"2"}), delete=True)

        SyncJob(fake_store, make_config(pair)).run(pair)

        ops = [op for op, _ in fake_store.calls if op in ("put", "delete")]
        assert ops == ["put", "put", "delete"]


class TestSafetyAndDryRun:
    def test_unreadable_subdirectory_blocks_deletes(self, fake_store, make_config, local_tree, monkeypatch):
        root = local_tree({"a.txt": b"a", "locked/important.txt": b"keep"})
        fake_store.seed(DEST, "a.txt", b"a")
        fake_store.seed(DEST, "locked/important.txt", b"keep")
        fake_store.seed(DEST, "stale.txt", b"s")
        monkeypatch.setattr("gcs_sync.services.local_scan.os.walk", walk_with_unreadable(root, "locked"))
        pair = make_pair(root, delete=True)

        outcome = SyncJob(fake_store, make_config(pair)).run(pair)

        assert outcome.status is SyncStatus.PARTIAL_FAILURE
        assert outcome.deleted == 0
        assert fake_store.ops("delete") == []
        assert fake_store.keys(DEST) == ["a.txt", "locked/important.txt", "stale.txt"]
        kinds = {(e.kind, e.key) for e in outcome.errors}
        assert (ErrorKind.LOCAL_IO, "locked") in kinds
        assert (ErrorKind.SAFETY, "locked/important.txt") in kinds
        assert (ErrorKind.SAFETY, "stale.txt") in kinds

    def test_unreadable_subdirectory_still_uploads(self, fake_store, make_config, local_tree, monkeypatch):
        root = local_tree({"new.txt": b"n", "locked/x.txt": b"x"})
        monkeypatch.setattr("gcs_sync.services.local_scan.os.walk", walk_with_unreadable(root, "locked"))
        pair = make_pair(root)

        outcome = SyncJob(fake_store, make_config(pair)).run(pair)

        assert outcome.uploaded == 1
        assert [e.kind for e in outcome.errors] == [ErrorKind.LOCAL_IO]

    def test_empty_source_with_delete_is_refused(self, fake_store, make_config, local_tree):
        fake_store.seed(DEST, "a.txt", b"a")
        fake_store.seed(DEST, "b.txt", b"b")
        pair = make_pair(local_tree({}), delete=True)

        outcome = SyncJob(fake_store, make_config(pair)).run(pair)

        assert outcome.status is SyncStatus.FATAL_FAILURE
        assert outcome.errors[0].kind is ErrorKind.SAFETY
        assert fake_store.keys(DEST) == ["a.txt", "b.txt"]

    def test_empty_source_allowed_when_requested(self, fake_store, make_config, local_tree):
        fake_store.seed(DEST, "a.txt", b"a")
        pair = make_pair(local_tree({}), delete=True)

        outcome = SyncJob(fake_store, make_config(pair, allow_empty_source=True)).run(pair)

        assert outcome.ok
        assert fake_store.keys(DEST) == []

    def test_dry_run_changes_nothing(self, fake_store, make_config, local_tree):
        fake_store.seed(DEST, "stale.txt", b"s")
        pair = make_pair(local_tree({"a.txt": b"a"}), delete=True)

        outcome = SyncJob(fake_store, make_config(pair, dry_run=True)).run(pair)

        assert outcome.ok
        assert outcome.dry_run
        assert outcome.planned_uploads == 1
        assert outcome.planned_deletes == 1
        assert outcome.uploaded == 0
        assert fake_store.keys(DEST) == ["stale.txt"]
        assert fake_store.ops("put") == []

    def test_dry_run_does_not_bootstrap(self, fake_store, make_config, local_tree):
        pair = make_pair(local_tree({"a.txt": b"a"}))

        SyncJob(fake_store, make_config(pair, dry_run=True)).run(pair)

        assert fake_store.ops("bootstrap") == []


class TestCancellation:
    def test_stopped_before_apply_cancels_every_transfer(self, fake_store, make_config, local_tree):
        fake_store.seed(DEST, "old.txt", b"o")
        pair = make_pair(local_tree({"a.txt": b"a"}), delete=True)
        stop = threading.Event()
        job = SyncJob(fake_store, make_config(pair), stop_event=stop)

        original_list = fake_store.list_objects

        def list_then_stop(destination):
            result = original_list(destination)
            stop.set()
            return result

        fake_store.list_objects = list_then_stop
        outcome = job.run(pair)

        assert outcome.status is SyncStatus.PARTIAL_FAILURE
        assert {e.kind for e in outcome.errors} == {ErrorKind.CANCELLED}
        assert fake_store.ops("put") == []
        assert fake_store.ops("delete") == []
        assert fake_store.keys(DEST) == ["old.txt"]

    def test_stop_gives_up_retrying(self, fake_store, make_config, local_tree):
        stop = threading.Event()
        fake_store.fail("put", "a.txt", *[TransientStorageError("503")] * 5)
        pair = make_pair(local_tree({"a.txt": b"a"}))
        job = SyncJob(fake_store, make_config(pair, max_attempts=5), stop_event=stop)

        original_put = fake_store.put

        def put_and_stop(*args):
            stop.set()
            return original_put(*args)

        fake_store.put = put_and_stop
        outcome = job.run(pair)

        assert outcome.status is SyncStatus.PARTIAL_FAILURE
        assert fake_store.ops("put") == ["a.txt"]


@pytest.mark.parametrize("workers", [1, 4])
def test_many_files_with_bounded_workers(fake_store, make_config, local_tree, workers):
    files = {f"dir{i % 3}/f{i}.txt": bytes([i]) * (i + 1) for i in range(25)}
    pair = make_pair(local_tree(files))

    outcome = SyncJob(fake_store, make_config(pair, transfer_workers=workers)).run(pair)

    assert outcome.uploaded == 25
    assert fake_store.keys(DEST) == sorted(files)
