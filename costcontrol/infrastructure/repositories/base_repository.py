"""
Base Repository - Abstract repository pattern implementation.

Provides common lookup helpers for the engine's repositories.
"""
from typing import Generic, TypeVar, Optional, Type
from sqlalchemy.orm import Session

from costcontrol.models import Base

T = TypeVar('T', bound=Base)


class BaseRepository(Generic[T]):
    """
    Base repository providing common data access operations.

    Type Parameters:
        T: The SQLAlchemy model type this repository manages
    """

    def __init__(self, session: Session, model_class: Type[T]):
        """
        Initialize the repository.

        Args:
            session: SQLAlchemy database session
            model_class: The model class this repository manages
        """
        self.session = session
        self.model_class = model_class

    def get_by_id(self, entity_id) -> Optional[T]:
        """
        Retrieve an entity by its primary key.

        Args:
            entity_id: Primary key value

        Returns:
            The entity if found, None otherwise
        """
        return self.session.get(self.model_class, entity_id)
