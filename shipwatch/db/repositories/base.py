"""
Base repository with common CRUD operations.

Provides generic database operations inherited by specific repositories.
"""

from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import Table, delete, select, update
from sqlalchemy.orm import Session

ModelT = TypeVar("ModelT", bound=BaseModel)


def to_uuid(value: UUID | str) -> UUID:
    return value if isinstance(value, UUID) else UUID(value)


class BaseRepository(ABC, Generic[ModelT]):
    """
    Base repository with common CRUD operations.

    Subclasses must implement:
    - table property: Return the SQLAlchemy Table
    - _row_to_model: Convert database row to Pydantic model
    - _model_to_dict: Convert Pydantic model to database dict
    """

    def __init__(self, session: Session):
        self.session = session

    @property
    @abstractmethod
    def table(self) -> Table:
        """SQLAlchemy table for this repository."""
        pass

    @abstractmethod
    def _row_to_model(self, row: Any) -> ModelT:
        """Convert database row to Pydantic model."""
        pass

    @abstractmethod
    def _model_to_dict(self, model: ModelT) -> dict:
        """Convert Pydantic model to database dict."""
        pass

    def get_by_id(self, id: UUID | str) -> ModelT | None:
        """
        Get entity by ID.

        Args:
            id: UUID of the entity

        Returns:
            Pydantic model or None if not found
        """
        stmt = select(self.table).where(self.table.c.id == to_uuid(id))
        row = self.session.execute(stmt).fetchone()

        if row is None:
            return None

        return self._row_to_model(row)

    def create(self, model: ModelT) -> ModelT:
        """
        Create new entity.

        Args:
            model: Pydantic model to create

        Returns:
            Created model as stored
        """
        data = self._model_to_dict(model)
        stmt = self.table.insert().values(**data).returning(self.table)
        row = self.session.execute(stmt).fetchone()
        return self._row_to_model(row)

    def update_by_id(self, id: UUID | str, **kwargs) -> bool:
        """
        Update entity by ID with specific fields.

        Returns:
            True if entity was updated, False if not found
        """
        stmt = update(self.table).where(self.table.c.id == to_uuid(id)).values(**kwargs)
        result = self.session.execute(stmt)
        return result.rowcount > 0

    def delete_by_id(self, id: UUID | str) -> bool:
        """
        Delete entity by ID.

        Returns:
            True if entity was deleted, False if not found
        """
        stmt = delete(self.table).where(self.table.c.id == to_uuid(id))
        result = self.session.execute(stmt)
        return result.rowcount > 0
