"""API routes."""

from .files import router as files_router
from .folders import router as folders_router
from .upload import router as upload_router
from .imagekit_auth import router as imagekit_auth_router

__all__ = [
    "files_router",
    "folders_router",
    "upload_router",
    "imagekit_auth_router",
]
