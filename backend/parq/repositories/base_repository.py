# backend/parq/repositories/base_repository.py
"""
Base repository for the Parq booking engine.

Repositories flush but never commit; the owning service decides when a
unit of work is complete (``BaseService.transaction``). SQLAlchemy errors
are logged here and re-raised as ``RepositoryException``.
"""

import logging
from typing import Any, Generic, List, NoReturn, Optional, Type, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import RepositoryException

T = TypeVar("T")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """Common data access for one mapped model keyed by a ULID ``id``."""

    def __init__(self, db: Session, model: Type[T]):
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    def get_fresh(self, id: str) -> Optional[T]:
        """Load by primary key, overwriting any stale copy in the identity map."""
        try:
            return self.db.get(self.model, id, populate_existing=True)
        except SQLAlchemyError as e:
            self._fail(f"retrieve {self.model.__name__} {id}", e)

    def create(self, **kwargs: Any) -> T:
        """Add and flush so generated defaults (id, timestamps) are populated."""
        try:
            entity = self.model(**kwargs)
            self.db.add(entity)
            self.db.flush()
            return entity
        except IntegrityError as e:
            self.db.rollback()
            self._fail(f"create {self.model.__name__} (integrity constraint)", e)
        except SQLAlchemyError as e:
            self.db.rollback()
            self._fail(f"create {self.model.__name__}", e)

    def update(self, id: str, **kwargs: Any) -> Optional[T]:
        """Set the given mapped attributes; unknown keys are ignored."""
        entity = self.get_fresh(id)
        if entity is None:
            return None
        try:
            for key, value in kwargs.items():
                if hasattr(entity, key):
                    setattr(entity, key, value)
            self.db.flush()
            return entity
        except SQLAlchemyError as e:
            self.db.rollback()
            self._fail(f"update {self.model.__name__} {id}", e)

    def _build_query(self) -> Query:
        return self.db.query(self.model)

    def _execute_query(self, query: Query) -> List[T]:
        try:
            return query.all()
        except SQLAlchemyError as e:
            self._fail(f"query {self.model.__name__}", e)

    def _fail(self, action: str, error: SQLAlchemyError) -> NoReturn:
        self.logger.error("Failed to %s: %s", action, error)
        raise RepositoryException(f"Failed to {action}: {error}") from error
