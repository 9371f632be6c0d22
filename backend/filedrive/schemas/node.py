"""Schemas for the node API."""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional


class FolderCreate(BaseModel):
    """Create a folder. ``parent_id`` omitted or null means root level."""
    name: str = Field(..., max_length=1024)
    parent_id: Optional[str] = None


class NodeUpdate(BaseModel):
    """Rename and/or move a node.

    Only fields present in the request body are applied, so an explicit
    ``"parent_id": null`` moves the node to the root while an absent
    ``parent_id`` leaves it where it is.
    """
    name: Optional[str] = Field(None, max_length=1024)
    parent_id: Optional[str] = None


class NodeResponse(BaseModel):
    """Folder or file in API responses. Storage keys are never exposed."""
    id: str
    owner_id: str
    kind: str  # 'FOLDER' or 'FILE'
    name: str
    parent_id: Optional[str] = None
    mime_type: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class DeleteResponse(BaseModel):
    """Summary of a recursive delete."""
    deleted_nodes: int
    removed_blobs: int
    orphaned_blobs: int
