"""Concurrent tree operations against one SQLite database file.

Each worker thread gets its own session. Whatever order the database
serializes them in, the outcome must be one of the allowed serial outcomes.
"""

import threading

from filedrive.database import SessionLocal
from filedrive.exceptions import CycleError, DriveException, InvalidParentError, NodeNotFoundError
from filedrive.models import Node
from filedrive.services.tree_service import TreeService

from tests.conftest import OWNER, make_stream, stored_keys


def _run_concurrently(blob_store, *operations):
    """Run each ``operation(service)`` in its own thread and session.

    Returns one ``("ok", value)`` or ``("error", exception)`` per operation.
    """
    barrier = threading.Barrier(len(operations))
    outcomes = [None] * len(operations)

    def worker(index, operation):
        db = SessionLocal()
        try:
            service = TreeService(db, blob_store, delete_batch_size=2)
            barrier.wait()
            outcomes[index] = ("ok", operation(service))
        except DriveException as e:
            outcomes[index] = ("error", e)
        finally:
            db.close()

    threads = [threading.Thread(target=worker, args=(i, op)) for i, op in enumerate(operations)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    assert all(not t.is_alive() for t in threads)
    return outcomes


def _rows(db):
    db.commit()
    db.expire_all()
    rows = {n.id: n.parent_id for n in db.query(Node).all()}
    db.commit()
    return rows


class TestConcurrentTreeOperations:

    def test_move_racing_delete_has_serial_outcome(self, service, blob_store, db):
        """A node moved into a folder being deleted is either deleted with it or never moved."""
        f1 = service.create_folder(OWNER, "F1")
        f2 = service.create_folder(OWNER, "F2", parent_id=f1.id)
        n1 = service.create_file(OWNER, "a.txt", make_stream(b"hi"))
        f1_id, f2_id, n1_id, n1_key = f1.id, f2.id, n1.id, n1.storage_key
        db.commit()

        outcomes = _run_concurrently(
            blob_store,
            lambda s: s.move(OWNER, n1_id, f2_id),
            lambda s: s.delete_recursive(OWNER, f1_id),
        )
        move_outcome, delete_outcome = outcomes
        rows = _rows(db)

        assert delete_outcome[0] == "ok"
        assert f1_id not in rows and f2_id not in rows
        if move_outcome[0] == "ok":
            # Move committed first, so the delete swept N1 up too.
            assert n1_id not in rows
            assert stored_keys(blob_store) == set()
        else:
            assert isinstance(move_outcome[1], InvalidParentError)
            assert rows[n1_id] is None
            assert stored_keys(blob_store) == {n1_key}

        # No node ever points at a deleted folder.
        assert all(parent is None or parent in rows for parent in rows.values())

    def test_upload_racing_delete_leaves_no_orphan(self, service, blob_store, db):
        folder_id = service.create_folder(OWNER, "F1").id
        db.commit()

        outcomes = _run_concurrently(
            blob_store,
            lambda s: s.create_file(OWNER, "late.txt", make_stream(b"late"), parent_id=folder_id),
            lambda s: s.delete_recursive(OWNER, folder_id),
        )
        upload_outcome, delete_outcome = outcomes
        rows = _rows(db)

        assert delete_outcome[0] == "ok"
        if upload_outcome[0] == "error":
            assert isinstance(upload_outcome[1], InvalidParentError)
        assert rows == {}
        assert stored_keys(blob_store) == set()

    def test_crossing_moves_cannot_form_cycle(self, service, blob_store, db):
        a_id = service.create_folder(OWNER, "A").id
        b_id = service.create_folder(OWNER, "B").id
        db.commit()

        outcomes = _run_concurrently(
            blob_store,
            lambda s: s.move(OWNER, a_id, b_id),
            lambda s: s.move(OWNER, b_id, a_id),
        )
        rows = _rows(db)

        successes = [o for o in outcomes if o[0] == "ok"]
        failures = [o for o in outcomes if o[0] == "error"]
        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0][1], CycleError)
        assert not (rows[a_id] == b_id and rows[b_id] == a_id)

    def test_overlapping_deletes(self, service, blob_store, db):
        outer_id = service.create_folder(OWNER, "outer").id
        inner_id = service.create_folder(OWNER, "inner", parent_id=outer_id).id
        service.create_file(OWNER, "x.txt", make_stream(b"x"), parent_id=inner_id)
        db.commit()

        outcomes = _run_concurrently(
            blob_store,
            lambda s: s.delete_recursive(OWNER, outer_id),
            lambda s: s.delete_recursive(OWNER, inner_id),
        )

        assert outcomes[0][0] == "ok"
        if outcomes[1][0] == "error":
            assert isinstance(outcomes[1][1], NodeNotFoundError)
        assert _rows(db) == {}
        assert stored_keys(blob_store) == set()

    def test_parallel_uploads_into_one_folder(self, service, blob_store, db):
        workers = 4
        folder_id = service.create_folder(OWNER, "inbox").id
        db.commit()

        outcomes = _run_concurrently(
            blob_store,
            *[
                (lambda s, i=i: s.create_file(OWNER, f"f{i}.txt", make_stream(b"%d" % i), parent_id=folder_id))
                for i in range(workers)
            ],
        )

        assert all(o[0] == "ok" for o in outcomes)
        keys = {o[1].storage_key for o in outcomes}
        assert len(keys) == workers
        assert stored_keys(blob_store) == keys
        assert len(service.list_children(OWNER, folder_id)) == workers
