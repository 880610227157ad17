"""Credentials for browser-side uploads to ImageKit."""

import logging

from fastapi import APIRouter, Depends

from ..core.auth import AuthContext, require_auth
from ..exceptions import BlobStoreError, InternalError
from ..schemas.file_entry import UploadAuthResponse
from ..services.blob_store import BlobStore, get_blob_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/imagekit-auth", tags=["upload"])


@router.get("", response_model=UploadAuthResponse)
def get_upload_auth(
    blob_store: BlobStore = Depends(get_blob_store),
    auth: AuthContext = Depends(require_auth),
):
    """Signed, short-lived token the browser passes to the ImageKit upload API."""
    try:
        return blob_store.authentication_parameters()
    except BlobStoreError as e:
        logger.error("Cannot sign upload credentials", extra={"user_id": auth.user_id, "error": str(e)})
        raise InternalError("Failed to generate authentication parameters", e) from e
