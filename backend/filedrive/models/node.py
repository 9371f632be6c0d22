"""Node model: one row per folder or file in an owner's tree."""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKeyConstraint, Index, String, UniqueConstraint
from sqlalchemy.types import TypeDecorator

from ..database import Base


class NodeKind(str, Enum):
    """Node kinds. Immutable once a node is created."""
    FOLDER = "FOLDER"
    FILE = "FILE"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UtcDateTime(TypeDecorator):
    """DateTime stored as UTC and always loaded timezone-aware.

    SQLite returns naive values; they are tagged as UTC on the way out.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value


class Node(Base):
    """A folder or file in an owner's tree.

    Bytes of FILE nodes live in the blob store under ``storage_key``;
    FOLDER nodes never carry a key.
    """

    __tablename__ = "nodes"
    __table_args__ = (
        # Target of the composite parent FK below.
        UniqueConstraint("id", "owner_id", name="uq_nodes_id_owner"),
        UniqueConstraint("storage_key", name="uq_nodes_storage_key"),
        # A parent must exist and share the child's owner.
        ForeignKeyConstraint(
            ["parent_id", "owner_id"],
            ["nodes.id", "nodes.owner_id"],
            name="fk_nodes_parent_same_owner",
        ),
        CheckConstraint("kind IN ('FOLDER', 'FILE')", name="ck_nodes_kind"),
        CheckConstraint(
            "(kind = 'FILE' AND storage_key IS NOT NULL) OR "
            "(kind = 'FOLDER' AND storage_key IS NULL)",
            name="ck_nodes_storage_key_kind",
        ),
        Index("ix_nodes_owner_id", "owner_id"),
        Index("ix_nodes_owner_parent", "owner_id", "parent_id"),
    )

    id = Column(String(50), primary_key=True)  # nd-{uuid hex}
    owner_id = Column(String(100), nullable=False)
    kind = Column(String(10), nullable=False)
    name = Column(String(255), nullable=False)
    parent_id = Column(String(50), nullable=True)  # NULL = root level

    # FILE only
    storage_key = Column(String(64), nullable=True)
    mime_type = Column(String(255), nullable=True)

    created_at = Column(UtcDateTime(), nullable=False, default=utcnow)
    updated_at = Column(UtcDateTime(), nullable=False, default=utcnow)

    @property
    def is_folder(self) -> bool:
        return self.kind == NodeKind.FOLDER.value

    def __repr__(self) -> str:
        return f"<Node {self.id} {self.kind} {self.name!r} parent={self.parent_id}>"
