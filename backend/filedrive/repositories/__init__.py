"""Data access repositories."""

from .node_repository import NodeRepository, UNSET

__all__ = [
    "NodeRepository",
    "UNSET",
]
