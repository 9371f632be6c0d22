"""Database models."""

from .node import Node, NodeKind

__all__ = ["Node", "NodeKind"]
