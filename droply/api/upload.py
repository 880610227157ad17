"""Upload registration: the browser uploaded straight to ImageKit and now
reports the result so the metadata row can be created."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..core.auth import AuthContext, ensure_same_user, require_auth
from ..database import get_db
from ..schemas.file_entry import FileEntryResponse, RegisterUploadRequest
from ..services.file_service import FileService

router = APIRouter(prefix="/api/upload", tags=["files"])


@router.post("", response_model=FileEntryResponse)
def register_upload(
    data: RegisterUploadRequest,
    db: Session = Depends(get_db),
    auth: AuthContext = Depends(require_auth),
):
    ensure_same_user(auth, data.user_id)
    return FileService(db).register_upload(auth.user_id, data.imagekit)
