"""Base repository class for data access patterns."""

from abc import ABC
from typing import Generic, List, Optional, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.base import BaseModel

ModelType = TypeVar("ModelType", bound=BaseModel)


class BaseRepository(ABC, Generic[ModelType]):
    """Base repository providing common CRUD operations."""

    def __init__(self, db: AsyncSession, model: type[ModelType]):
        self.db = db
        self.model = model

    async def get_by_id(self, id: UUID, refresh: bool = False) -> Optional[ModelType]:
        """Get a single record by ID.

        ``refresh`` bypasses the identity map so the caller sees the row as
        currently committed, including its version token.
        """
        query = select(self.model).where(self.model.id == id)
        if refresh:
            query = query.execution_options(populate_existing=True)
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def create(self, **kwargs) -> ModelType:
        """Create a new record."""
        instance = self.model(**kwargs)
        self.db.add(instance)
        await self.db.flush()
        await self.db.refresh(instance)
        return instance

    async def add_all(self, instances: List[ModelType]) -> List[ModelType]:
        """Bulk insert already-built instances."""
        self.db.add_all(instances)
        await self.db.flush()
        return instances

    async def save(self, instance: ModelType, **changes) -> ModelType:
        """Apply changes to a loaded instance and flush.

        Versioned models emit ``UPDATE ... WHERE version = :old`` here, so a
        concurrent writer surfaces as ``StaleDataError`` at this point.
        """
        for field, value in changes.items():
            if not hasattr(instance, field):
                raise AttributeError(f"{self.model.__name__} has no field '{field}'")
            setattr(instance, field, value)

        await self.db.flush()
        await self.db.refresh(instance)
        return instance

    async def delete(self, instance: ModelType) -> None:
        """Delete a loaded record."""
        await self.db.delete(instance)
        await self.db.flush()
