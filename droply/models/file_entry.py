"""File entry model: files and folders share one table."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKeyConstraint,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.sql import func
from ..database import Base

FOLDER_TYPE = "folder"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class FileEntry(Base):
    """A file or folder owned by a single user.

    ``parent_id`` points at a folder row of the same owner. The composite
    foreign key on ``(parent_id, user_id)`` makes a cross-owner parent
    impossible at the storage layer; whether the parent is a folder is
    checked by FileService in the same transaction as the insert.
    """

    __tablename__ = "files"
    __table_args__ = (
        UniqueConstraint("id", "user_id", name="uq_files_id_user"),
        ForeignKeyConstraint(
            ["parent_id", "user_id"],
            ["files.id", "files.user_id"],
            ondelete="CASCADE",
            name="fk_files_parent_same_owner",
        ),
        CheckConstraint("size >= 0", name="ck_files_size_non_negative"),
        Index("ix_files_user_parent", "user_id", "parent_id"),
        Index("ix_files_user_trash", "user_id", "is_trash"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)

    name = Column(Text, nullable=False)
    path = Column(Text, nullable=False)
    size = Column(Integer, nullable=False, default=0)
    type = Column(Text, nullable=False)  # MIME type, or "folder"

    file_url = Column(Text, nullable=False, default="")
    thumbnail_url = Column(Text, nullable=True)

    # Ownership and hierarchy
    user_id = Column(String(255), nullable=False)
    parent_id = Column(String(36), nullable=True)  # NULL = root level

    # Flags
    is_folder = Column(Boolean, nullable=False, default=False)
    is_starred = Column(Boolean, nullable=False, default=False)
    is_trash = Column(Boolean, nullable=False, default=False)

    # Timestamps
    # Set client-side: microsecond precision keeps listings in insertion order.
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), onupdate=_utcnow)

    def __repr__(self) -> str:
        kind = "folder" if self.is_folder else "file"
        return f"<FileEntry {kind} id={self.id} name={self.name!r} owner={self.user_id}>"
