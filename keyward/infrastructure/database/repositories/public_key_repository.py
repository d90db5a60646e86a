"""Public key data access repository."""
from typing import AsyncIterator, List
from sqlalchemy import select, exists
from sqlalchemy.ext.asyncio import AsyncSession

from keyward.infrastructure.database.models.public_key import PublicKeyModel
from keyward.infrastructure.database.repositories.base import BaseRepository


class PublicKeyRepository(BaseRepository[PublicKeyModel]):
    """Public key data access only."""
    
    def __init__(self, session: AsyncSession):
        super().__init__(session, PublicKeyModel)
    
    async def exists_by_owner_and_name(self, owner_id: int, name: str) -> bool:
        """Check if the owner already has a key with this name."""
        stmt = exists(PublicKeyModel).where(
            PublicKeyModel.owner_id == owner_id,
            PublicKeyModel.name == name
        )
        result = await self.session.execute(select(stmt))
        return bool(result.scalar())
    
    async def exists_by_fingerprint(self, fingerprint: str) -> bool:
        """Check if any owner registered this fingerprint."""
        stmt = exists(PublicKeyModel).where(
            PublicKeyModel.fingerprint == fingerprint
        )
        result = await self.session.execute(select(stmt))
        return bool(result.scalar())
    
    async def find_by_owner(self, owner_id: int) -> List[PublicKeyModel]:
        """Find all public keys for an owner."""
        stmt = (
            select(PublicKeyModel)
            .where(PublicKeyModel.owner_id == owner_id)
            .order_by(PublicKeyModel.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
    
    async def iterate(self, batch_size: int = 500) -> AsyncIterator[PublicKeyModel]:
        """Iterate over all public keys in id order, one batch at a time."""
        last_id = 0
        while True:
            stmt = (
                select(PublicKeyModel)
                .where(PublicKeyModel.id > last_id)
                .order_by(PublicKeyModel.id)
                .limit(batch_size)
            )
            result = await self.session.execute(stmt)
            batch = list(result.scalars().all())
            if not batch:
                return
            for model in batch:
                yield model
            last_id = batch[-1].id
