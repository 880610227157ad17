"""Business logic services."""

from .blob_store import BlobStore, ImageKitBlobStore
from .file_service import FileService

__all__ = ["BlobStore", "FileService", "ImageKitBlobStore"]
