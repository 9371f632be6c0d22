"""Pydantic schemas for API validation."""

from .node import (
    FolderCreate,
    NodeUpdate,
    NodeResponse,
    DeleteResponse,
)

__all__ = [
    "FolderCreate",
    "NodeUpdate",
    "NodeResponse",
    "DeleteResponse",
]
