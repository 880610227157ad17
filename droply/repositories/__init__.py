"""Data access layer."""

from .base import BaseRepository
from .file_repository import FileRepository

__all__ = ["BaseRepository", "FileRepository"]
