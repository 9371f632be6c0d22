"""Node API endpoints.

Endpoints are thin: TreeService owns validation, transactions, and blob
consistency. Every endpoint is scoped to the owner from ``require_owner``;
the owner is never read from the request body.
"""

from typing import BinaryIO, Iterator, List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.identity import require_owner
from ..database import get_db
from ..repositories.node_repository import UNSET
from ..schemas.node import DeleteResponse, FolderCreate, NodeResponse, NodeUpdate
from ..services.tree_service import TreeService
from ..storage.base import CHUNK_SIZE, BlobStore

router = APIRouter(prefix="/api", tags=["nodes"])

_DEFAULT_MIME_TYPE = "application/octet-stream"


def get_blob_store(request: Request) -> BlobStore:
    """The process-wide blob store built at startup."""
    return request.app.state.blob_store


def get_tree_service(
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
) -> TreeService:
    return TreeService(db, blob_store, delete_batch_size=settings.delete_batch_size)


def _iter_stream(stream: BinaryIO) -> Iterator[bytes]:
    try:
        while True:
            chunk = stream.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
    finally:
        stream.close()


@router.get("/nodes", response_model=List[NodeResponse])
def list_children(
    parent_id: Optional[str] = Query(None, description="Folder to list; omit for the root level"),
    owner_id: str = Depends(require_owner),
    service: TreeService = Depends(get_tree_service),
):
    """List the direct children of a folder, ordered by name."""
    return service.list_children(owner_id, parent_id)


@router.get("/nodes/{node_id}", response_model=NodeResponse)
def get_node(
    node_id: str,
    owner_id: str = Depends(require_owner),
    service: TreeService = Depends(get_tree_service),
):
    return service.get_node(owner_id, node_id)


@router.post("/folders", response_model=NodeResponse, status_code=201)
def create_folder(
    data: FolderCreate,
    owner_id: str = Depends(require_owner),
    service: TreeService = Depends(get_tree_service),
):
    """Create a folder under an owned folder or at the root."""
    return service.create_folder(owner_id, data.name, data.parent_id)


@router.post("/files", response_model=NodeResponse, status_code=201)
def upload_file(
    file: UploadFile = File(...),
    name: Optional[str] = Form(None),
    parent_id: Optional[str] = Form(None),
    owner_id: str = Depends(require_owner),
    service: TreeService = Depends(get_tree_service),
):
    """Upload a file. ``name`` defaults to the uploaded filename."""
    return service.create_file(
        owner_id,
        name if name is not None else (file.filename or ""),
        file.file,
        parent_id=parent_id or None,
        mime_type=file.content_type or _DEFAULT_MIME_TYPE,
        max_bytes=settings.max_upload_bytes,
    )


@router.patch("/nodes/{node_id}", response_model=NodeResponse)
def update_node(
    node_id: str,
    data: NodeUpdate,
    owner_id: str = Depends(require_owner),
    service: TreeService = Depends(get_tree_service),
):
    """Rename and/or move a node in one transaction."""
    fields = data.model_fields_set
    return service.update(
        owner_id,
        node_id,
        name=data.name if "name" in fields else UNSET,
        parent_id=data.parent_id if "parent_id" in fields else UNSET,
    )


@router.delete("/nodes/{node_id}", response_model=DeleteResponse)
def delete_node(
    node_id: str,
    owner_id: str = Depends(require_owner),
    service: TreeService = Depends(get_tree_service),
):
    """Delete a node and its entire subtree."""
    result = service.delete_recursive(owner_id, node_id)
    return DeleteResponse(
        deleted_nodes=result.deleted_nodes,
        removed_blobs=result.removed_blobs,
        orphaned_blobs=len(result.failed_blob_keys),
    )


@router.get("/nodes/{node_id}/content")
def download_file(
    node_id: str,
    owner_id: str = Depends(require_owner),
    service: TreeService = Depends(get_tree_service),
):
    """Stream a file's bytes."""
    node, stream = service.open_file(owner_id, node_id)
    return StreamingResponse(
        _iter_stream(stream),
        media_type=node.mime_type or _DEFAULT_MIME_TYPE,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(node.name)}"},
    )
