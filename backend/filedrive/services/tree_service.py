"""Tree service: the only entry point for mutating an owner's tree.

Deep module: callers see create/rename/move/delete/list/open; behind it
the service keeps the node table and the blob store consistent.

Every public method runs in exactly one database transaction. On any error
the transaction is rolled back, so a failed ``move`` or ``delete_recursive``
leaves the tree exactly as it was.

Blob and metadata writes cannot share a commit. The ordering rules are:
- upload: write the blob, then insert the row; if the insert fails, remove
  the blob again (a crash in between leaves an orphan for the reconciler).
- delete: delete the rows and commit, then remove the blobs best-effort
  (a failed removal leaves an orphan, never a dangling reference).
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, BinaryIO, Dict, Iterator, List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..exceptions import (
    CycleError,
    DatabaseError,
    DriveException,
    InvalidNameError,
    NodeNotFoundError,
    OperationCancelledError,
    TransactionConflictError,
)
from ..models.node import Node, NodeKind
from ..repositories.node_repository import UNSET, NodeRepository
from ..storage.base import BlobStore

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 255
DEFAULT_BATCH_SIZE = 500

T = TypeVar("T")


@dataclass
class DeleteResult:
    """Outcome of a recursive delete, after commit."""
    deleted_nodes: int = 0
    removed_blobs: int = 0
    failed_blob_keys: List[str] = field(default_factory=list)


def _chunks(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class TreeService:
    """Create, rename, move, and recursively delete nodes for one owner at a time.

    Public methods:
        create_folder     -- new FOLDER under an owned folder or at root
        create_file       -- store bytes, then a FILE node pointing at them
        rename            -- change a node's name
        update            -- rename and/or move in one transaction
        move              -- re-parent a node, rejecting cycles
        delete_recursive  -- remove a node and its whole subtree, then its blobs
        list_children     -- direct children of a folder or of the root
        get_node          -- one owned node
        open_file         -- a FILE node and a stream over its bytes
    """

    def __init__(self, db: Session, blob_store: BlobStore, delete_batch_size: int = DEFAULT_BATCH_SIZE):
        self.db = db
        self.repo = NodeRepository(db)
        self.blobs = blob_store
        self.delete_batch_size = max(1, delete_batch_size)

    # --- Transactions ---

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[None]:
        """Commit on success; roll back and translate on any failure.

        After a commit every loaded node is detached, so the nodes handed
        back to callers keep their committed values even if a later
        operation on this session rolls back.
        """
        try:
            yield
            self.db.commit()
            self.db.expunge_all()
        except DriveException:
            self.db.rollback()
            raise
        except (OperationalError, IntegrityError) as e:
            self.db.rollback()
            logger.warning(
                "Transaction conflict during %s", operation,
                extra={"operation": operation, "error": str(e.orig if hasattr(e, "orig") else e)},
            )
            raise TransactionConflictError() from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Database error during %s", operation)
            raise DatabaseError(f"{operation} failed", original_error=e) from e
        except BaseException:
            self.db.rollback()
            raise

    # --- Reads ---

    def get_node(self, owner_id: str, node_id: str) -> Node:
        with self._transaction("get_node"):
            return self.repo.get(owner_id, node_id)

    def list_children(self, owner_id: str, parent_id: Optional[str] = None) -> List[Node]:
        """Children ordered by name. A non-root parent must be an owned folder."""
        with self._transaction("list_children"):
            if parent_id is not None:
                self.repo.get_folder(owner_id, parent_id)
            return self.repo.list_children(owner_id, parent_id)

    def open_file(self, owner_id: str, node_id: str) -> Tuple[Node, BinaryIO]:
        """Return a FILE node with a readable stream over its bytes.

        Folders have no content and are reported as not found.
        """
        with self._transaction("open_file"):
            node = self.repo.get(owner_id, node_id)
        if node.is_folder:
            raise NodeNotFoundError(node_id)
        return node, self.blobs.open(node.storage_key)

    # --- Create ---

    def create_folder(self, owner_id: str, name: str, parent_id: Optional[str] = None) -> Node:
        clean_name = self._clean_name(name)
        with self._transaction("create_folder"):
            node = self.repo.insert(owner_id, NodeKind.FOLDER, clean_name, parent_id)

        logger.info(
            "Created folder",
            extra={"owner_id": owner_id, "node_id": node.id, "parent_id": parent_id},
        )
        return node

    def create_file(
        self,
        owner_id: str,
        name: str,
        stream: BinaryIO,
        parent_id: Optional[str] = None,
        mime_type: Optional[str] = None,
        max_bytes: Optional[int] = None,
    ) -> Node:
        """Store the bytes, then insert the FILE node referencing them.

        If the insert fails (bad parent, conflict, database error) the blob
        just written is removed again before the error propagates.
        """
        clean_name = self._clean_name(name)
        storage_key = self.blobs.put(stream, max_bytes=max_bytes)

        try:
            with self._transaction("create_file"):
                node = self.repo.insert(
                    owner_id,
                    NodeKind.FILE,
                    clean_name,
                    parent_id,
                    storage_key=storage_key,
                    mime_type=mime_type,
                )
        except BaseException:
            self._discard_blob(storage_key)
            raise

        logger.info(
            "Created file",
            extra={"owner_id": owner_id, "node_id": node.id, "parent_id": parent_id, "storage_key": storage_key},
        )
        return node

    def _discard_blob(self, storage_key: str) -> None:
        """Best-effort compensation for a blob whose row was never committed."""
        try:
            logger.warning("Rolling back upload, removing blob", extra={"storage_key": storage_key})
            self.blobs.remove(storage_key)
        except Exception:
            # The reconciler will find it later.
            logger.exception("Failed to roll back upload, orphaned blob", extra={"storage_key": storage_key})

    # --- Rename / move ---

    def rename(self, owner_id: str, node_id: str, new_name: str) -> Node:
        return self.update(owner_id, node_id, name=new_name)

    def move(self, owner_id: str, node_id: str, new_parent_id: Optional[str]) -> Node:
        """Re-parent a node; ``new_parent_id=None`` moves it to the root.

        Raises:
            NodeNotFoundError: node is missing or foreign.
            CycleError: target is the node itself or one of its descendants.
            InvalidParentError: target is not an owned folder.
        """
        return self.update(owner_id, node_id, parent_id=new_parent_id)

    def update(self, owner_id: str, node_id: str, name: Any = UNSET, parent_id: Any = UNSET) -> Node:
        """Rename and/or move in one transaction. Omitted fields are left alone.

        Renaming to the current name or moving to the current parent changes
        nothing, not even updated_at.
        """
        with self._transaction("update"):
            node = self.repo.get(owner_id, node_id, lock=True)
            changes: Dict[str, Any] = {}
            if name is not UNSET:
                clean_name = self._clean_name(name)
                if clean_name != node.name:
                    changes["name"] = clean_name
            if parent_id is not UNSET and parent_id != node.parent_id:
                self._check_move_target(owner_id, node_id, parent_id)
                changes["parent_id"] = parent_id
            if not changes:
                return node
            node = self.repo.update(owner_id, node_id, **changes)

        logger.info(
            "Updated node",
            extra={"owner_id": owner_id, "node_id": node_id, "fields": sorted(changes)},
        )
        return node

    def _check_move_target(self, owner_id: str, node_id: str, new_parent_id: Optional[str]) -> None:
        if new_parent_id is None:
            return
        if new_parent_id == node_id:
            raise CycleError(node_id, new_parent_id)
        self.repo.get_folder(owner_id, new_parent_id, lock=True)
        # Locking the whole chain serializes moves whose ancestries overlap,
        # so two concurrent moves cannot close a loop.
        ancestors = self.repo.ancestor_chain(owner_id, new_parent_id, lock=True)
        if any(ancestor.id == node_id for ancestor in ancestors):
            raise CycleError(node_id, new_parent_id)

    # --- Delete ---

    def delete_recursive(
        self,
        owner_id: str,
        node_id: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> DeleteResult:
        """Delete a node and every descendant, then their blobs.

        The subtree is enumerated level by level (no recursion, so depth is
        unbounded) with each row locked, deleted children-first in batches,
        and committed once. ``cancel_event`` is checked between batches; if
        it is set before the commit nothing is deleted.

        Raises:
            NodeNotFoundError: node is missing or foreign.
            OperationCancelledError: cancelled before commit.
            TransactionConflictError: a concurrent writer collided; retry.
        """
        with self._transaction("delete_recursive"):
            root = self.repo.get(owner_id, node_id, lock=True)
            subtree = self._collect_subtree(owner_id, root, cancel_event)
            storage_keys = [n.storage_key for n in subtree if n.storage_key]

            # Breadth-first order reversed puts every child before its parent.
            ordered_ids = [n.id for n in reversed(subtree)]
            deleted = 0
            for batch in _chunks(ordered_ids, self.delete_batch_size):
                self._check_cancelled(cancel_event, node_id)
                deleted += self.repo.delete_many(owner_id, batch)
            self._check_cancelled(cancel_event, node_id)

        result = DeleteResult(deleted_nodes=deleted)
        logger.info(
            "Deleted subtree",
            extra={"owner_id": owner_id, "node_id": node_id, "nodes": deleted, "blobs": len(storage_keys)},
        )

        for storage_key in storage_keys:
            try:
                self.blobs.remove(storage_key)
                result.removed_blobs += 1
            except Exception:
                # Metadata is already gone; the reconciler reclaims the bytes.
                result.failed_blob_keys.append(storage_key)
                logger.exception(
                    "Failed to remove blob after delete (orphaned)",
                    extra={"storage_key": storage_key, "node_id": node_id},
                )
        return result

    def _collect_subtree(
        self,
        owner_id: str,
        root: Node,
        cancel_event: Optional[threading.Event],
    ) -> List[Node]:
        """Root plus all descendants in breadth-first order."""
        subtree: List[Node] = [root]
        seen = {root.id}
        frontier = [root.id] if root.is_folder else []
        while frontier:
            next_frontier: List[str] = []
            for batch in _chunks(frontier, self.delete_batch_size):
                self._check_cancelled(cancel_event, root.id)
                for child in self.repo.list_children_of(owner_id, batch, lock=True):
                    if child.id in seen:
                        continue
                    seen.add(child.id)
                    subtree.append(child)
                    if child.is_folder:
                        next_frontier.append(child.id)
            frontier = next_frontier
        return subtree

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event], node_id: str) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Delete cancelled before commit", extra={"node_id": node_id})
            raise OperationCancelledError(node_id)

    # --- Helpers ---

    @staticmethod
    def _clean_name(name: Optional[str]) -> str:
        cleaned = (name or "").strip()
        if not cleaned:
            raise InvalidNameError()
        if len(cleaned) > MAX_NAME_LENGTH:
            raise InvalidNameError(f"Name cannot exceed {MAX_NAME_LENGTH} characters")
        return cleaned
