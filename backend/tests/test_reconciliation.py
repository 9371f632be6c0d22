"""Tests for the orphaned blob sweep and the worker entry point."""

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from filedrive import worker
from filedrive.exceptions import BlobStoreIOError
from filedrive.services.reconciliation_service import BlobReconciler

from tests.conftest import OWNER, make_stream, stored_keys

GRACE = timedelta(hours=1)


def _later():
    """A reference time at which every blob written so far is past the grace period."""
    return datetime.now(timezone.utc) + GRACE + timedelta(minutes=1)


@pytest.fixture()
def reconciler(db, blob_store) -> BlobReconciler:
    return BlobReconciler(db, blob_store)


class TestSweep:

    def test_removes_only_unreferenced_blobs(self, reconciler, service, blob_store):
        kept = service.create_file(OWNER, "kept.txt", make_stream(b"kept"))
        orphan = blob_store.put(make_stream(b"orphan"))

        result = reconciler.sweep(GRACE, now=_later())

        assert result.scanned == 2
        assert result.orphaned == 1
        assert result.removed == 1
        assert result.orphan_keys == [orphan]
        assert stored_keys(blob_store) == {kept.storage_key}

    def test_young_blobs_are_skipped(self, reconciler, blob_store):
        orphan = blob_store.put(make_stream(b"in flight"))

        result = reconciler.sweep(GRACE)

        assert result.scanned == 1
        assert result.orphaned == 0
        assert stored_keys(blob_store) == {orphan}

    def test_dry_run_removes_nothing(self, reconciler, blob_store):
        orphan = blob_store.put(make_stream(b"orphan"))

        result = reconciler.sweep(GRACE, dry_run=True, now=_later())

        assert result.orphaned == 1
        assert result.removed == 0
        assert stored_keys(blob_store) == {orphan}

    def test_blobs_of_other_owners_are_referenced(self, reconciler, service, blob_store):
        service.create_file("someone-else", "theirs.txt", make_stream())
        result = reconciler.sweep(GRACE, now=_later())
        assert result.orphaned == 0
        assert len(stored_keys(blob_store)) == 1

    def test_reclaims_blob_left_by_failed_delete_cleanup(self, reconciler, service, blob_store):
        node = service.create_file(OWNER, "a.txt", make_stream())
        with patch.object(blob_store, "remove", side_effect=BlobStoreIOError("unreachable")):
            service.delete_recursive(OWNER, node.id)
        assert stored_keys(blob_store) == {node.storage_key}

        result = reconciler.sweep(GRACE, now=_later())

        assert result.removed == 1
        assert stored_keys(blob_store) == set()

    def test_removal_failure_is_counted_and_logged(self, reconciler, blob_store, caplog):
        blob_store.put(make_stream(b"orphan"))
        with patch.object(blob_store, "remove", side_effect=BlobStoreIOError("unreachable")):
            with caplog.at_level(logging.ERROR, logger="filedrive.services.reconciliation_service"):
                result = reconciler.sweep(GRACE, now=_later())

        assert result.orphaned == 1
        assert result.failed == 1
        assert result.removed == 0
        assert "Failed to remove orphaned blob" in caplog.text

    def test_many_blobs_are_looked_up_in_batches(self, reconciler, service, blob_store):
        kept = service.create_file(OWNER, "kept.txt", make_stream())
        orphans = {blob_store.put(make_stream(b"%d" % i)) for i in range(5)}

        with patch("filedrive.services.reconciliation_service.LOOKUP_BATCH_SIZE", 2):
            result = reconciler.sweep(GRACE, now=_later())

        assert result.scanned == 6
        assert set(result.orphan_keys) == orphans
        assert stored_keys(blob_store) == {kept.storage_key}


class TestWorker:

    def test_once_runs_a_single_sweep(self, blob_store):
        orphan = blob_store.put(make_stream(b"orphan"))
        with patch.object(worker, "build_blob_store", return_value=blob_store), \
                patch.object(worker, "setup_logging"):
            exit_code = worker.main(["--once", "--grace", "0"])

        assert exit_code == 0
        assert orphan not in stored_keys(blob_store)

    def test_dry_run_flag(self, blob_store):
        orphan = blob_store.put(make_stream(b"orphan"))
        with patch.object(worker, "build_blob_store", return_value=blob_store), \
                patch.object(worker, "setup_logging"):
            exit_code = worker.main(["--once", "--dry-run", "--grace", "0"])

        assert exit_code == 0
        assert stored_keys(blob_store) == {orphan}

    def test_failed_removals_give_nonzero_exit(self, blob_store):
        blob_store.put(make_stream(b"orphan"))
        with patch.object(worker, "build_blob_store", return_value=blob_store), \
                patch.object(worker, "setup_logging"), \
                patch.object(blob_store, "remove", side_effect=BlobStoreIOError("unreachable")):
            exit_code = worker.main(["--once", "--grace", "0"])

        assert exit_code == 1

    def test_defaults_come_from_settings(self):
        args = worker.parse_args([])
        assert args.once is False
        assert args.interval == worker.settings.reconcile_interval_seconds
        assert args.grace == worker.settings.reconcile_grace_seconds
