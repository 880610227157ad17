"""Repository for file entry database operations.

Methods flush but never commit; FileService owns the transaction.
"""

from typing import Iterable, List, Optional, Set

from sqlalchemy.orm import Session

from ..database import is_postgresql
from ..exceptions import EntryNotFoundError
from ..models.file_entry import FileEntry
from .base import BaseRepository


class FileRepository(BaseRepository[FileEntry]):
    """Data access layer for the ``files`` table."""

    model_class = FileEntry
    not_found_error = EntryNotFoundError

    def __init__(self, db: Session):
        super().__init__(db)

    # --- Reads ---

    def list_children(self, user_id: str, parent_id: Optional[str]) -> List[FileEntry]:
        """Direct children of *parent_id*, or root-level entries when None."""
        query = self._owned_query(user_id)
        if parent_id:
            query = query.filter(FileEntry.parent_id == parent_id)
        else:
            query = query.filter(FileEntry.parent_id.is_(None))
        return query.order_by(FileEntry.created_at, FileEntry.id).all()

    def list_trashed(self, user_id: str) -> List[FileEntry]:
        return (
            self._owned_query(user_id)
            .filter(FileEntry.is_trash.is_(True))
            .order_by(FileEntry.created_at, FileEntry.id)
            .all()
        )

    def get_owned_folder(self, folder_id: str, user_id: str, lock: bool = False) -> Optional[FileEntry]:
        """Folder owned by *user_id*, or None.

        With ``lock=True`` the row is read ``FOR UPDATE`` on PostgreSQL so a
        concurrent delete cannot slip between the check and a child insert.
        """
        query = self._owned_query(user_id).filter(
            FileEntry.id == folder_id,
            FileEntry.is_folder.is_(True),
        )
        if lock and is_postgresql():
            query = query.with_for_update()
        return query.first()

    def get_descendants(self, user_id: str, root_ids: Iterable[str]) -> List[FileEntry]:
        """Every entry below the given folders, breadth-first, roots excluded."""
        found: List[FileEntry] = []
        seen: Set[str] = set(root_ids)
        frontier = list(seen)
        while frontier:
            children = (
                self._owned_query(user_id)
                .filter(FileEntry.parent_id.in_(frontier))
                .all()
            )
            frontier = []
            for child in children:
                if child.id in seen:
                    continue
                seen.add(child.id)
                found.append(child)
                if child.is_folder:
                    frontier.append(child.id)
        return found

    def get_ancestor_ids(self, user_id: str, entry_id: str, max_depth: int) -> List[str]:
        """Walk the parent chain upward from *entry_id* (inclusive).

        Stops at root, at a missing row, at a repeated id, or after
        ``max_depth + 1`` hops. The caller compares the result length with
        *max_depth* to detect an over-deep or corrupt chain.
        """
        chain: List[str] = []
        current: Optional[str] = entry_id
        while current and current not in chain and len(chain) <= max_depth:
            chain.append(current)
            row = (
                self.db.query(FileEntry.parent_id)
                .filter(FileEntry.id == current, FileEntry.user_id == user_id)
                .first()
            )
            current = row.parent_id if row else None
        return chain

    def get_subtree_height(self, user_id: str, root_id: str, max_depth: int) -> int:
        """Number of levels below *root_id*: 0 for a file or an empty folder.

        Walks at most ``max_depth + 1`` levels.
        """
        height = 0
        seen: Set[str] = {root_id}
        frontier = [root_id]
        while frontier and height <= max_depth:
            rows = (
                self.db.query(FileEntry.id, FileEntry.is_folder)
                .filter(FileEntry.user_id == user_id, FileEntry.parent_id.in_(frontier))
                .all()
            )
            rows = [r for r in rows if r.id not in seen]
            if not rows:
                break
            height += 1
            seen.update(r.id for r in rows)
            frontier = [r.id for r in rows if r.is_folder]
        return height

    def lock_rows(self, user_id: str, entry_ids: Iterable[str]) -> None:
        """Take row locks on the given owned entries, in id order.

        A no-op outside PostgreSQL; SQLite transactions already hold the
        database write lock from their first statement.
        """
        ids = sorted(set(entry_ids))
        if not ids or not is_postgresql():
            return
        (
            self._owned_query(user_id)
            .filter(FileEntry.id.in_(ids))
            .order_by(FileEntry.id)
            .with_for_update()
            .all()
        )

    # --- Writes ---

    def add(self, entry: FileEntry) -> FileEntry:
        self.db.add(entry)
        self.db.flush()
        self.db.refresh(entry)
        return entry

    def set_trash(self, user_id: str, entry_ids: List[str], value: bool) -> int:
        if not entry_ids:
            return 0
        count = (
            self._owned_query(user_id)
            .filter(FileEntry.id.in_(entry_ids))
            .update({FileEntry.is_trash: value}, synchronize_session=False)
        )
        self.db.flush()
        return count

    def delete_many(self, user_id: str, entry_ids: List[str]) -> int:
        """Delete the given owned entries in one statement. Returns the row count.

        Rows removed by the parent foreign key's CASCADE are not reported in
        the DELETE rowcount, so matching rows are counted beforehand.
        """
        if not entry_ids:
            return 0
        query = self._owned_query(user_id).filter(FileEntry.id.in_(entry_ids))
        count = query.count()
        query.delete(synchronize_session=False)
        self.db.flush()
        return count
