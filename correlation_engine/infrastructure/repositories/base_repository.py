"""
Base Repository - shared data access for the spend-side tables.

Repositories never commit; the calling service owns the transaction.
"""
from abc import ABC
from typing import Generic, TypeVar, Optional, Type
from sqlalchemy.orm import Session

from ...models import Base

T = TypeVar('T', bound=Base)


class BaseRepository(ABC, Generic[T]):
    """
    Base repository over one mapped model keyed by a string id.

    Type Parameters:
        T: The SQLAlchemy model type this repository manages
    """

    def __init__(self, session: Session, model_class: Type[T]):
        self.session = session
        self.model_class = model_class

    def get_by_id(self, entity_id: str) -> Optional[T]:
        """
        Look up a row by primary key (identity map first).

        Returns:
            The entity if found, None otherwise
        """
        return self.session.get(self.model_class, entity_id)

    def exists(self, **criteria) -> bool:
        """
        Check if a row matching every column=value pair exists.

        Args:
            **criteria: Column-value pairs to match
        """
        return self.session.query(self.model_class).filter_by(**criteria).first() is not None

    def add(self, entity: T) -> T:
        self.session.add(entity)
        return entity

    def delete(self, entity: T) -> None:
        self.session.delete(entity)
