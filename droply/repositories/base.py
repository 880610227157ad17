"""Base repository with shared owner-scoped get-by-ID patterns.

Subclasses specify model_class, id_column, owner_column and
not_found_error; the base provides the common lookups. Every lookup is
scoped to an owner so a row belonging to someone else is indistinguishable
from a missing one.
"""

from typing import TypeVar, Generic, Optional, Type
from sqlalchemy.orm import Session, Query

from ..database import Base
from ..exceptions import DroplyException

ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Shared repository logic for owner-scoped SQLAlchemy models.

    Class variables to set in subclasses:
        model_class:     The SQLAlchemy model (e.g., FileEntry)
        id_column:       Name of the primary-key column (default "id")
        owner_column:    Name of the owner column (default "user_id")
        not_found_error: Exception class to raise from get_owned
    """

    model_class: Type[ModelT]
    id_column: str = "id"
    owner_column: str = "user_id"
    not_found_error: Type[DroplyException]

    def __init__(self, db: Session):
        self.db = db

    def _owned_query(self, owner_id: str) -> Query:
        """All rows belonging to *owner_id*."""
        col = getattr(self.model_class, self.owner_column)
        return self.db.query(self.model_class).filter(col == owner_id)

    def get_owned(self, entity_id: str, owner_id: str) -> ModelT:
        """Get an owned entity by primary key. Raises not_found_error if missing."""
        entity = self.get_owned_optional(entity_id, owner_id)
        if entity is None:
            raise self.not_found_error(entity_id)
        return entity

    def get_owned_optional(self, entity_id: str, owner_id: str) -> Optional[ModelT]:
        """Get an owned entity by primary key, or None if not found."""
        col = getattr(self.model_class, self.id_column)
        return self._owned_query(owner_id).filter(col == entity_id).first()
