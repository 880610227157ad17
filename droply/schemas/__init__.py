"""Pydantic schemas for API validation."""

from .file_entry import (
    BlobPurgeSummary,
    EmptyTrashResponse,
    FileEntryResponse,
    FolderCreateRequest,
    FolderCreateResponse,
    ImageKitUploadResult,
    MoveRequest,
    RegisterUploadRequest,
    UploadAuthResponse,
)

__all__ = [
    "BlobPurgeSummary",
    "EmptyTrashResponse",
    "FileEntryResponse",
    "FolderCreateRequest",
    "FolderCreateResponse",
    "ImageKitUploadResult",
    "MoveRequest",
    "RegisterUploadRequest",
    "UploadAuthResponse",
]
