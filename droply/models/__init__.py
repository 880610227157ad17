"""Database models."""

from .file_entry import FileEntry, FOLDER_TYPE

__all__ = ["FileEntry", "FOLDER_TYPE"]
