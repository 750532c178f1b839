"""Base repository class for common CRUD operations."""

from typing import Generic, List, TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mcp_fleet.models.base import Base

T = TypeVar("T", bound=Base)


class BaseRepository(Generic[T]):
    """Base repository with common CRUD operations."""

    def __init__(self, session: AsyncSession, model: type[T]) -> None:
        """
        Initialize repository.

        Args:
            session: Database session
            model: SQLAlchemy model class
        """
        self.session = session
        self.model = model

    async def get(self, key: str | int) -> T | None:
        """Get entity by primary key, or None."""
        return await self.session.get(self.model, key)

    async def list_all(self) -> List[T]:
        """List every entity of the model."""
        result = await self.session.execute(select(self.model))
        return list(result.scalars().all())

    async def create(self, entity: T) -> T:
        """Add a new entity and flush it."""
        self.session.add(entity)
        await self.session.flush()
        return entity

    async def update(self, entity: T) -> T:
        """Flush pending changes of an already attached entity."""
        await self.session.flush()
        return entity
