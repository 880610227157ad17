"""File API: listing, direct upload, trash and per-entry flag operations.

Endpoints are thin; FileService owns ownership checks, hierarchy rules and
blob store orchestration. Every endpoint requires a session, and the owner
is always the authenticated user, never a value taken from the request.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.orm import Session

from ..core.auth import AuthContext, ensure_same_user, require_auth
from ..database import get_db
from ..schemas.file_entry import (
    BlobPurgeSummary,
    EmptyTrashResponse,
    FileEntryResponse,
    MoveRequest,
)
from ..services.blob_store import BlobStore, get_blob_store
from ..services.file_service import BlobOutcomeStatus, FileService, read_capped

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/files", tags=["files"])


@router.get("", response_model=List[FileEntryResponse])
def list_files(
    user_id: Optional[str] = Query(None, alias="userId"),
    parent_id: Optional[str] = Query(None, alias="parentId"),
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    """Entries directly inside ``parentId``, or at root level when omitted."""
    ensure_same_user(auth, user_id)
    return FileService(db).list_entries(auth.user_id, parent_id or None)


# --- Fixed-path endpoints (must be before /{file_id} routes) ---


@router.get("/trash", response_model=List[FileEntryResponse])
def list_trash(
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    """Every trashed entry of the caller, at any depth."""
    return FileService(db).list_trash(auth.user_id)


@router.post("/upload", response_model=FileEntryResponse)
def upload_file(
    file: Optional[UploadFile] = File(None),
    user_id: Optional[str] = Form(None, alias="userId"),
    parent_id: Optional[str] = Form(None, alias="parentId"),
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    auth: AuthContext = Depends(require_auth),
):
    """Upload an image or PDF to the blob store and register it."""
    ensure_same_user(auth, user_id)

    service = FileService(db, blob_store)
    content = read_capped(file.file, service.max_upload_bytes) if file is not None else None
    return service.upload_file(
        auth.user_id,
        content,
        file.filename if file is not None else "",
        file.content_type if file is not None else None,
        parent_id or None,
    )


@router.delete("/empty-trash", response_model=EmptyTrashResponse)
def empty_trash(
    db: Session = Depends(get_db),
    blob_store: BlobStore = Depends(get_blob_store),
    auth: AuthContext = Depends(require_auth),
):
    """Permanently delete trashed entries. Blob deletion failures are not errors."""
    result = FileService(db, blob_store).empty_trash(auth.user_id)
    if result.deleted_count == 0 and not result.outcomes:
        message = "No files in trash"
    else:
        message = f"Successfully deleted {result.deleted_count} files from trash"
    return EmptyTrashResponse(
        message=message,
        deleted_count=result.deleted_count,
        blobs=BlobPurgeSummary(
            deleted=result.count(BlobOutcomeStatus.DELETED),
            failed=result.count(BlobOutcomeStatus.FAILED),
            skipped=result.count(BlobOutcomeStatus.SKIPPED),
        ),
    )


# --- Per-entry operations ---


@router.patch("/{file_id}/star", response_model=FileEntryResponse)
def toggle_star(
    file_id: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    return FileService(db).toggle_star(auth.user_id, file_id)


@router.patch("/{file_id}/trash", response_model=FileEntryResponse)
def toggle_trash(
    file_id: str,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    """Move to or restore from trash. Folders take their contents along."""
    return FileService(db).toggle_trash(auth.user_id, file_id)


@router.patch("/{file_id}/move", response_model=FileEntryResponse)
def move_file(
    file_id: str,
    request: MoveRequest,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    """Reparent an entry under another owned folder, or to root with ``parentId: null``."""
    return FileService(db).move_entry(auth.user_id, file_id, request.parent_id)
