"""
Base Repository implementation.
Provides common async data access patterns over an AsyncSession.
"""

from abc import ABC, abstractmethod
from typing import Generic, Sequence, TypeVar

from sqlalchemy import Select, select
from sqlalchemy.ext.asyncio import AsyncSession


ModelT = TypeVar("ModelT")


class BaseRepository(ABC, Generic[ModelT]):
    """
    Abstract base repository with common operations.

    Subclasses must implement:
    - model: Return the SQLAlchemy model class
    """

    def __init__(self, db: AsyncSession):
        self._db = db

    @property
    def session(self) -> AsyncSession:
        return self._db

    @property
    @abstractmethod
    def model(self) -> type[ModelT]:
        """Return the SQLAlchemy model class."""
        ...

    def _base_query(self) -> Select:
        return select(self.model)

    async def find_by_id(self, entity_id: int, *, for_update: bool = False) -> ModelT | None:
        """
        Find entity by ID.

        Args:
            entity_id: Entity ID
            for_update: Lock the row until the current transaction ends

        Returns:
            Entity or None
        """
        query = self._base_query().where(self.model.id == entity_id)  # type: ignore[attr-defined]
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        return await self._db.scalar(query)

    async def find_by_ids(self, entity_ids: Sequence[int]) -> Sequence[ModelT]:
        """Find entities by IDs (order not guaranteed)."""
        if not entity_ids:
            return []
        query = self._base_query().where(self.model.id.in_(entity_ids))  # type: ignore[attr-defined]
        return (await self._db.execute(query)).scalars().all()

    async def save(self, entity: ModelT) -> ModelT:
        """Add and flush an entity without committing."""
        self._db.add(entity)
        await self._db.flush()
        return entity
