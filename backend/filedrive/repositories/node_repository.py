"""Repository for the nodes table.

Every public method is scoped by ``owner_id``. A node owned by someone else
is reported exactly like a missing one (``NodeNotFoundError``) so that the
repository never leaks the existence of other owners' rows.

Callers own the transaction: nothing here commits. Pass ``lock=True`` to
take a ``SELECT ... FOR UPDATE`` row lock (PostgreSQL; SQLite serializes
whole transactions instead and ignores the clause).
"""

import uuid
from typing import Any, Iterable, List, Optional, Sequence, Set

from sqlalchemy.orm import Query, Session

from ..exceptions import DatabaseError, InvalidParentError, NodeNotFoundError
from ..models.node import Node, NodeKind, utcnow

# Sentinel for "field not supplied" in partial updates; ``None`` is a real
# value for parent_id (move to root).
UNSET: Any = object()


class NodeRepository:
    """CRUD over the nodes table."""

    def __init__(self, db: Session):
        self.db = db

    def _owned(self, owner_id: str, lock: bool = False) -> Query:
        query = self.db.query(Node).filter(Node.owner_id == owner_id)
        if lock:
            query = query.with_for_update()
        return query

    # --- Reads ---

    def get_optional(self, owner_id: str, node_id: str, lock: bool = False) -> Optional[Node]:
        return self._owned(owner_id, lock).filter(Node.id == node_id).first()

    def get(self, owner_id: str, node_id: str, lock: bool = False) -> Node:
        """Get an owned node. Raises NodeNotFoundError if missing or foreign."""
        node = self.get_optional(owner_id, node_id, lock)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def get_folder(self, owner_id: str, folder_id: str, lock: bool = False) -> Node:
        """Resolve a prospective parent. Raises InvalidParentError unless it is an owned FOLDER."""
        node = self.get_optional(owner_id, folder_id, lock)
        if node is None or not node.is_folder:
            raise InvalidParentError(folder_id)
        return node

    def list_children(self, owner_id: str, parent_id: Optional[str], lock: bool = False) -> List[Node]:
        """Direct children ordered by name. ``parent_id=None`` lists the root level."""
        query = self._owned(owner_id, lock)
        if parent_id is None:
            query = query.filter(Node.parent_id.is_(None))
        else:
            query = query.filter(Node.parent_id == parent_id)
        return query.order_by(Node.name, Node.id).all()

    def list_children_of(self, owner_id: str, parent_ids: Sequence[str], lock: bool = False) -> List[Node]:
        """Children of several folders at once, used for level-by-level traversal."""
        if not parent_ids:
            return []
        return (
            self._owned(owner_id, lock)
            .filter(Node.parent_id.in_(list(parent_ids)))
            .order_by(Node.parent_id, Node.name, Node.id)
            .all()
        )

    def ancestor_chain(self, owner_id: str, node_id: str, lock: bool = False) -> List[Node]:
        """Nodes from ``node_id`` up to its root, inclusive, nearest first."""
        chain: List[Node] = []
        seen: Set[str] = set()
        current: Optional[str] = node_id
        while current is not None:
            if current in seen:
                # Only reachable if the table was corrupted outside this service.
                raise DatabaseError(f"Cycle detected in ancestor chain of {node_id}")
            seen.add(current)
            node = self.get(owner_id, current, lock)
            chain.append(node)
            current = node.parent_id
        return chain

    def find_referenced_keys(self, storage_keys: Iterable[str]) -> Set[str]:
        """Subset of ``storage_keys`` referenced by any FILE node, across all owners.

        Not owner-scoped: only the blob reconciler calls this.
        """
        keys = list(storage_keys)
        if not keys:
            return set()
        rows = self.db.query(Node.storage_key).filter(Node.storage_key.in_(keys)).all()
        return {row[0] for row in rows}

    # --- Writes ---

    def insert(
        self,
        owner_id: str,
        kind: NodeKind,
        name: str,
        parent_id: Optional[str] = None,
        storage_key: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> Node:
        """Insert a node. Raises InvalidParentError if the parent is not an owned FOLDER."""
        if parent_id is not None:
            # Locking the parent blocks a concurrent recursive delete from
            # enumerating it until this insert commits.
            self.get_folder(owner_id, parent_id, lock=True)

        now = utcnow()
        node = Node(
            id=self._generate_node_id(),
            owner_id=owner_id,
            kind=NodeKind(kind).value,
            name=name,
            parent_id=parent_id,
            storage_key=storage_key,
            mime_type=mime_type,
            created_at=now,
            updated_at=now,
        )
        self.db.add(node)
        self.db.flush()
        return node

    def update(self, owner_id: str, node_id: str, name: Any = UNSET, parent_id: Any = UNSET) -> Node:
        """Partial update of name and/or parent_id. Always refreshes updated_at."""
        node = self.get(owner_id, node_id, lock=True)
        if name is not UNSET:
            node.name = name
        if parent_id is not UNSET:
            node.parent_id = parent_id
        node.updated_at = utcnow()
        self.db.flush()
        return node

    def delete(self, owner_id: str, node_id: str) -> None:
        """Delete exactly one row. The caller deletes descendants first."""
        deleted = self._owned(owner_id).filter(Node.id == node_id).delete(synchronize_session=False)
        if deleted == 0:
            raise NodeNotFoundError(node_id)
        self.db.flush()

    def delete_many(self, owner_id: str, node_ids: Sequence[str]) -> int:
        """Delete a batch of rows in one statement. Returns the number removed.

        Rows already removed by a concurrent delete are silently skipped.
        """
        if not node_ids:
            return 0
        deleted = (
            self._owned(owner_id)
            .filter(Node.id.in_(list(node_ids)))
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return deleted

    # --- Helpers ---

    @staticmethod
    def _generate_node_id() -> str:
        return f"nd-{uuid.uuid4().hex}"
