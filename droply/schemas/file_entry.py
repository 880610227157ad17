"""File entry schemas.

Everything on the wire is camelCase (``fileUrl``, ``parentId``, ...);
the Python side stays snake_case through an alias generator.
"""

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Any, Optional


class CamelModel(BaseModel):
    """Base schema serialising field names as camelCase."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class FileEntryResponse(CamelModel):
    """A file or folder row as returned to clients."""
    id: str
    name: str
    path: str
    size: int
    type: str
    file_url: str
    thumbnail_url: Optional[str] = None
    user_id: str
    parent_id: Optional[str] = None
    is_folder: bool
    is_starred: bool
    is_trash: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# --- Folder creation ---

class FolderCreateRequest(CamelModel):
    """Create a folder. ``name`` is validated by FileService so that a
    non-string name is reported the same way as an empty one."""
    name: Any = None
    user_id: Optional[str] = None
    parent_id: Optional[str] = None


class FolderCreateResponse(CamelModel):
    success: bool = True
    message: str
    folder: FileEntryResponse


# --- Upload registration ---

class ImageKitUploadResult(CamelModel):
    """Subset of the ImageKit upload response the client forwards to us.

    ImageKit returns more fields (width, height, AITags, ...); they are ignored.
    """
    url: Optional[str] = None
    name: Optional[str] = None
    file_path: Optional[str] = None
    size: Optional[int] = Field(default=None, ge=0)
    file_type: Optional[str] = None
    thumbnail_url: Optional[str] = None
    file_id: Optional[str] = None


class RegisterUploadRequest(CamelModel):
    imagekit: Optional[ImageKitUploadResult] = None
    user_id: Optional[str] = None


# --- Move ---

class MoveRequest(CamelModel):
    """Reparent an entry. ``parentId: null`` moves it to root level."""
    parent_id: Optional[str] = None


# --- Empty trash ---

class BlobPurgeSummary(CamelModel):
    """How the blob deletions of an empty-trash call went, per outcome."""
    deleted: int = 0
    failed: int = 0
    skipped: int = 0


class EmptyTrashResponse(CamelModel):
    success: bool = True
    message: str
    deleted_count: int
    blobs: BlobPurgeSummary = BlobPurgeSummary()


# --- Blob store client credentials ---

class UploadAuthResponse(CamelModel):
    """Parameters a browser needs to upload straight to ImageKit."""
    token: str
    expire: int
    signature: str
