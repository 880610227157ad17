"""Deep module for every file and folder operation.

Callers hand in an owner id that has already been authenticated; this module
enforces the ownership and hierarchy rules, talks to the blob store and owns
the database transaction. It never renders HTTP responses: failures are
raised as DroplyException subclasses with client-safe messages, while the
underlying cause is logged here.
"""

import logging
import os
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..exceptions import (
    BlobStoreError,
    InternalError,
    ParentFolderNotFoundError,
    ValidationError,
)
from ..models.file_entry import FileEntry, FOLDER_TYPE
from ..repositories.file_repository import FileRepository
from ..schemas.file_entry import ImageKitUploadResult
from .blob_store import BlobStore, file_id_of

logger = logging.getLogger(__name__)

UNTITLED = "Untitled"
DEFAULT_REGISTERED_TYPE = "image"
PDF_MIME_TYPE = "application/pdf"


class BlobOutcomeStatus(str, Enum):
    DELETED = "deleted"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class BlobTarget:
    """Plain snapshot of a trashed row, safe to hand to worker threads."""
    entry_id: str
    file_url: str
    path: str
    is_folder: bool


@dataclass(frozen=True)
class BlobOutcome:
    entry_id: str
    status: BlobOutcomeStatus
    blob_id: Optional[str] = None
    reason: str = ""


@dataclass
class TrashPurgeResult:
    """Outcome of emptying the trash."""
    deleted_count: int
    outcomes: List[BlobOutcome] = field(default_factory=list)

    def count(self, status: BlobOutcomeStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)


def derive_blob_id(file_url: Optional[str], path: Optional[str]) -> Optional[str]:
    """Guess the blob store name of a row from its URL, else its path.

    ``https://ik.imagekit.io/x/droply/u1/abc.png?tr=w-100`` -> ``abc.png``
    """
    candidate = ""
    if file_url:
        candidate = file_url.split("?", 1)[0].split("/")[-1]
    if not candidate and path:
        candidate = path.split("/")[-1]
    return candidate or None


def storage_file_name(original_name: str) -> str:
    """Collision-free storage name that keeps the original extension."""
    _, ext = os.path.splitext(original_name or "")
    return f"{uuid.uuid4()}{ext}"


def storage_folder(user_id: str, parent_id: Optional[str]) -> str:
    if parent_id:
        return f"/droply/{user_id}/folder/{parent_id}"
    return f"/droply/{user_id}"


def read_capped(stream: BinaryIO, limit: int) -> bytes:
    """Read at most ``limit + 1`` bytes, enough to tell an oversized payload apart."""
    return stream.read(limit + 1)


def is_supported_upload_type(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    return content_type.startswith("image/") or content_type == PDF_MIME_TYPE


class FileService:
    """All metadata operations behind one narrow interface.

    Public methods:
        list_entries    -- children of a folder, or root level
        list_trash      -- every trashed entry of the owner
        create_folder   -- new folder, optionally under an owned folder
        register_upload -- persist metadata for a blob the client uploaded
        upload_file     -- upload bytes to the blob store, then persist
        empty_trash     -- delete trashed rows and, best-effort, their blobs
        toggle_star     -- flip is_starred
        toggle_trash    -- flip is_trash (cascades through folders)
        move_entry      -- reparent, refusing cycles

    Args:
        db: Request-scoped session. This service commits it.
        blob_store: Blob store client. Only needed by upload and purge paths.
    """

    def __init__(
        self,
        db: Session,
        blob_store: Optional[BlobStore] = None,
        max_upload_bytes: Optional[int] = None,
        delete_concurrency: Optional[int] = None,
        max_folder_depth: Optional[int] = None,
    ):
        self.db = db
        self.repo = FileRepository(db)
        self.blob_store = blob_store
        self.max_upload_bytes = max_upload_bytes or settings.max_upload_bytes
        self.delete_concurrency = delete_concurrency or settings.trash_delete_concurrency
        self.max_folder_depth = max_folder_depth or settings.max_folder_depth

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_entries(self, user_id: str, parent_id: Optional[str] = None) -> List[FileEntry]:
        try:
            return self.repo.list_children(user_id, parent_id)
        except SQLAlchemyError as e:
            logger.exception("Error fetching files", extra={"user_id": user_id, "parent_id": parent_id})
            raise InternalError("Error to fetch files", e) from e

    def list_trash(self, user_id: str) -> List[FileEntry]:
        try:
            return self.repo.list_trashed(user_id)
        except SQLAlchemyError as e:
            logger.exception("Error fetching trash", extra={"user_id": user_id})
            raise InternalError("Error to fetch files", e) from e

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_folder(self, user_id: str, name, parent_id: Optional[str] = None) -> FileEntry:
        """Create a folder. Sibling folders may share a name."""
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("Folder name is required", field="name")

        try:
            if parent_id:
                self._require_parent(user_id, parent_id, lock=True)
            folder = self.repo.add(FileEntry(
                id=str(uuid.uuid4()),
                name=name.strip(),
                path=f"/folders/{user_id}/{uuid.uuid4()}",
                size=0,
                type=FOLDER_TYPE,
                file_url="",
                thumbnail_url=None,
                user_id=user_id,
                parent_id=parent_id or None,
                is_folder=True,
                is_starred=False,
                is_trash=False,
            ))
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if parent_id:
                # Parent vanished between the check and the insert.
                raise ParentFolderNotFoundError(parent_id) from e
            logger.exception("Error creating folder", extra={"user_id": user_id})
            raise InternalError("Failed to create folder", e) from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Error creating folder", extra={"user_id": user_id})
            raise InternalError("Failed to create folder", e) from e

        logger.info("Folder created", extra={"user_id": user_id, "file_id": folder.id, "parent_id": parent_id})
        return folder

    def register_upload(self, user_id: str, result: Optional[ImageKitUploadResult]) -> FileEntry:
        """Persist metadata for a blob the client already stored. Always root level."""
        if result is None or not result.url:
            raise ValidationError("Invalid file upload data", field="imagekit")

        name = result.name or UNTITLED
        try:
            entry = self.repo.add(FileEntry(
                name=name,
                path=result.file_path or f"/droply/{user_id}/{name}",
                size=result.size or 0,
                type=result.file_type or DEFAULT_REGISTERED_TYPE,
                file_url=result.url,
                thumbnail_url=result.thumbnail_url or None,
                user_id=user_id,
                parent_id=None,
                is_folder=False,
                is_starred=False,
                is_trash=False,
            ))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Error saving file", extra={"user_id": user_id})
            raise InternalError("Failed to save file information", e) from e

        logger.info("Upload registered", extra={"user_id": user_id, "file_id": entry.id})
        return entry

    def upload_file(
        self,
        user_id: str,
        content: Optional[bytes],
        file_name: str,
        content_type: Optional[str],
        parent_id: Optional[str] = None,
    ) -> FileEntry:
        """Upload *content* to the blob store and register it.

        Root level is allowed: without *parent_id* the blob goes under
        ``/droply/{user_id}``.
        """
        if content is None:
            raise ValidationError("No file provided", field="file")

        if parent_id:
            try:
                self._require_parent(user_id, parent_id)
            except SQLAlchemyError as e:
                logger.exception("Error checking parent folder", extra={"parent_id": parent_id})
                raise InternalError("Failed to upload file", e) from e

        if not is_supported_upload_type(content_type):
            raise ValidationError("Only images and pdf are supported", field="file")
        if len(content) > self.max_upload_bytes:
            raise ValidationError("File is too large", field="file")

        stored_name = storage_file_name(file_name)
        folder = storage_folder(user_id, parent_id)

        try:
            blob = self._store().upload(content, stored_name, folder)
        except BlobStoreError as e:
            logger.error(
                "Blob upload failed",
                extra={"user_id": user_id, "folder": folder, "error": str(e)},
            )
            raise InternalError("Failed to upload file", e) from e

        try:
            entry = self.repo.add(FileEntry(
                name=file_name or stored_name,
                path=blob.file_path,
                size=len(content),
                type=content_type,
                file_url=blob.url,
                thumbnail_url=blob.thumbnail_url,
                user_id=user_id,
                parent_id=parent_id or None,
                is_folder=False,
                is_starred=False,
                is_trash=False,
            ))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Error saving uploaded file", extra={"user_id": user_id})
            self._discard_blob(blob.file_id)
            if isinstance(e, IntegrityError) and parent_id:
                raise ParentFolderNotFoundError(parent_id) from e
            raise InternalError("Failed to upload file", e) from e

        logger.info(
            "File uploaded",
            extra={"user_id": user_id, "file_id": entry.id, "size": entry.size, "parent_id": parent_id},
        )
        return entry

    # ------------------------------------------------------------------
    # Trash
    # ------------------------------------------------------------------

    def empty_trash(self, user_id: str) -> TrashPurgeResult:
        """Permanently delete the owner's trashed entries.

        Trashed folders take their whole subtree with them. Blob deletions
        run on a bounded pool and are best-effort: a failure is logged and
        recorded in the outcomes, and the rows are deleted regardless.
        """
        try:
            trashed = self.repo.list_trashed(user_id)
            if not trashed:
                return TrashPurgeResult(deleted_count=0)

            trashed_ids = {e.id for e in trashed}
            folder_ids = [e.id for e in trashed if e.is_folder]
            nested = [d for d in self.repo.get_descendants(user_id, folder_ids) if d.id not in trashed_ids]
            targets = [
                BlobTarget(e.id, e.file_url or "", e.path or "", bool(e.is_folder))
                for e in trashed + nested
            ]
        except SQLAlchemyError as e:
            logger.exception("Error loading trash", extra={"user_id": user_id})
            raise InternalError("Failed to empty trash", e) from e

        outcomes = self._purge_blobs(targets)

        try:
            deleted = self.repo.delete_many(user_id, [t.entry_id for t in targets])
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception("Error deleting trashed rows", extra={"user_id": user_id})
            raise InternalError("Failed to empty trash", e) from e

        result = TrashPurgeResult(deleted_count=deleted, outcomes=outcomes)
        logger.info(
            "Trash emptied",
            extra={
                "user_id": user_id,
                "deleted_count": deleted,
                "blobs_deleted": result.count(BlobOutcomeStatus.DELETED),
                "blobs_failed": result.count(BlobOutcomeStatus.FAILED),
                "blobs_skipped": result.count(BlobOutcomeStatus.SKIPPED),
            },
        )
        return result

    def toggle_star(self, user_id: str, entry_id: str) -> FileEntry:
        entry = self.repo.get_owned(entry_id, user_id)
        entry.is_starred = not entry.is_starred
        return self._commit_entry(entry, "Failed to update file")

    def toggle_trash(self, user_id: str, entry_id: str) -> FileEntry:
        """Flip the trash flag; a folder's descendants follow it."""
        entry = self.repo.get_owned(entry_id, user_id)
        entry.is_trash = not entry.is_trash
        if entry.is_folder:
            nested = self.repo.get_descendants(user_id, [entry.id])
            self.repo.set_trash(user_id, [d.id for d in nested], entry.is_trash)
        return self._commit_entry(entry, "Failed to update file")

    # ------------------------------------------------------------------
    # Move
    # ------------------------------------------------------------------

    def move_entry(self, user_id: str, entry_id: str, parent_id: Optional[str]) -> FileEntry:
        """Reparent an entry, or move it to root when *parent_id* is None.

        The moved entry and the target's whole ancestor chain stay locked
        until commit, so two crossing moves cannot both pass the cycle check.
        """
        entry = self.repo.get_owned(entry_id, user_id)
        if parent_id:
            try:
                if self.repo.get_owned_folder(parent_id, user_id) is None:
                    raise ParentFolderNotFoundError(parent_id)
                chain = self._lock_ancestry(user_id, entry.id, parent_id)
                if entry.id in chain:
                    raise ValidationError(
                        "Cannot move a folder into itself or its own descendant", field="parentId"
                    )
                height = 0
                if entry.is_folder:
                    height = self.repo.get_subtree_height(user_id, entry.id, self.max_folder_depth)
                if len(chain) + 1 + height > self.max_folder_depth:
                    raise ValidationError("Folder nesting is too deep", field="parentId")
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.exception("Error checking move target", extra={"file_id": entry_id, "parent_id": parent_id})
                raise InternalError("Failed to move file", e) from e
        entry.parent_id = parent_id or None
        return self._commit_entry(entry, "Failed to move file")

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _store(self) -> BlobStore:
        if self.blob_store is None:
            raise BlobStoreError("No blob store configured")
        return self.blob_store

    def _require_parent(self, user_id: str, parent_id: str, lock: bool = False) -> FileEntry:
        """Owned folder *parent_id*, or ParentFolderNotFoundError.

        Also refuses a parent whose ancestor chain is already at the depth bound.
        """
        parent = self.repo.get_owned_folder(parent_id, user_id, lock=lock)
        if parent is None:
            raise ParentFolderNotFoundError(parent_id)
        if len(self.repo.get_ancestor_ids(user_id, parent_id, self.max_folder_depth)) >= self.max_folder_depth:
            raise ValidationError("Folder nesting is too deep", field="parentId")
        return parent

    def _lock_ancestry(self, user_id: str, entry_id: str, parent_id: str) -> List[str]:
        """Lock *entry_id* and every ancestor of *parent_id*; return the chain.

        The chain is re-read after each round of locking until every id in
        it is held, since a concurrent move may have changed it meanwhile.
        """
        locked: set = set()
        wanted = {entry_id}
        while True:
            self.repo.lock_rows(user_id, wanted - locked)
            locked |= wanted
            chain = self.repo.get_ancestor_ids(user_id, parent_id, self.max_folder_depth)
            wanted = set(chain)
            if wanted <= locked:
                return chain

    def _commit_entry(self, entry: FileEntry, failure_message: str) -> FileEntry:
        try:
            self.db.commit()
            self.db.refresh(entry)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.exception(failure_message, extra={"file_id": entry.id})
            raise InternalError(failure_message, e) from e
        return entry

    def _discard_blob(self, file_id: str) -> None:
        """Remove a blob whose metadata could not be saved. Best-effort."""
        try:
            self._store().delete(file_id)
        except BlobStoreError as e:
            logger.warning("Orphaned blob left behind", extra={"blob_id": file_id, "error": str(e)})

    def _purge_blobs(self, targets: List[BlobTarget]) -> List[BlobOutcome]:
        """Delete blobs for *targets* on a bounded pool; one outcome per target."""
        outcomes: List[BlobOutcome] = []
        candidates = []
        for target in targets:
            if target.is_folder:
                outcomes.append(BlobOutcome(target.entry_id, BlobOutcomeStatus.SKIPPED, reason="folder"))
            else:
                candidates.append(target)
        if not candidates:
            return outcomes

        workers = min(self.delete_concurrency, len(candidates))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="blob-purge") as executor:
            futures = {executor.submit(self._delete_blob, t): t for t in candidates}
            for future in as_completed(futures):
                target = futures[future]
                try:
                    outcomes.append(future.result())
                except Exception as e:
                    logger.error(
                        "Blob deletion crashed",
                        extra={"file_id": target.entry_id, "error": str(e)},
                    )
                    outcomes.append(BlobOutcome(target.entry_id, BlobOutcomeStatus.FAILED, reason=str(e)))
        return outcomes

    def _delete_blob(self, target: BlobTarget) -> BlobOutcome:
        """Resolve and delete the blob behind one trashed file."""
        blob_id = derive_blob_id(target.file_url, target.path)
        if not blob_id:
            return BlobOutcome(target.entry_id, BlobOutcomeStatus.SKIPPED, reason="no blob id")

        store = self._store()
        try:
            try:
                matches = store.find_by_name(blob_id, limit=1)
            except BlobStoreError as e:
                logger.error(
                    "Blob lookup failed, deleting by derived id",
                    extra={"file_id": target.entry_id, "blob_id": blob_id, "error": str(e)},
                )
                store.delete(blob_id)
                return BlobOutcome(target.entry_id, BlobOutcomeStatus.DELETED, blob_id)

            if matches:
                match_id = file_id_of(matches[0])
                if match_id is None:
                    logger.warning(
                        "Blob lookup matched a non-file object",
                        extra={"file_id": target.entry_id, "blob_id": blob_id},
                    )
                    return BlobOutcome(target.entry_id, BlobOutcomeStatus.SKIPPED, blob_id, "not a file object")
                store.delete(match_id)
                return BlobOutcome(target.entry_id, BlobOutcomeStatus.DELETED, match_id)

            store.delete(blob_id)
            return BlobOutcome(target.entry_id, BlobOutcomeStatus.DELETED, blob_id)
        except BlobStoreError as e:
            logger.error(
                "Error deleting blob",
                extra={"file_id": target.entry_id, "blob_id": blob_id, "error": str(e)},
            )
            return BlobOutcome(target.entry_id, BlobOutcomeStatus.FAILED, blob_id, str(e))
