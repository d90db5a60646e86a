"""Generic repository over integer keyed models."""
from abc import ABC
from typing import Optional, TypeVar, Generic, Type
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

T = TypeVar('T')


class BaseRepository(ABC, Generic[T]):
    """Lookup, save and delete shared by all repositories."""
    
    def __init__(self, session: AsyncSession, model_class: Type[T]):
        self.session = session
        self.model_class = model_class
    
    async def find_by_id(self, id: int) -> Optional[T]:
        """Find entity by ID."""
        return await self.session.get(self.model_class, id)
    
    async def save(self, entity: T) -> T:
        """Save entity (create or update)."""
        try:
            self.session.add(entity)
            await self.session.flush()
            return entity
        except IntegrityError as e:
            await self.session.rollback()
            raise RepositoryError(f"Failed to save entity: {e.orig}") from e
    
    async def delete(self, id: int) -> bool:
        """Delete entity by ID."""
        entity = await self.find_by_id(id)
        if entity:
            await self.session.delete(entity)
            await self.session.flush()
            return True
        return False


class RepositoryError(Exception):
    """Repository operation error."""
    pass
