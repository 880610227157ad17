"""Folder API: creation only. Listing folders goes through ``GET /api/files``."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..core.auth import AuthContext, ensure_same_user, require_auth
from ..database import get_db
from ..schemas.file_entry import FileEntryResponse, FolderCreateRequest, FolderCreateResponse
from ..services.file_service import FileService

router = APIRouter(prefix="/api/folders", tags=["folders"])


@router.post("/create", response_model=FolderCreateResponse)
def create_folder(
    data: FolderCreateRequest,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    """Create a folder at root level or inside an owned folder."""
    ensure_same_user(auth, data.user_id)

    folder = FileService(db).create_folder(auth.user_id, data.name, data.parent_id)
    return FolderCreateResponse(
        message="Folder created successfully",
        folder=FileEntryResponse.model_validate(folder),
    )
