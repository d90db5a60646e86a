"""SQLAlchemy backed key registry."""
from datetime import timezone
from typing import AsyncIterator, List

from keyward.core.errors import DuplicateKeyError, KeyNotFoundError
from keyward.core.keys.key_types import PublicKey
from keyward.core.keys.registry import KeyRegistry
from keyward.infrastructure.database.connection import DatabaseConnection
from keyward.infrastructure.database.models import PublicKeyModel, utcnow
from keyward.infrastructure.database.repositories import (
    PublicKeyRepository,
    RepositoryError,
)


def _aware(value):
    # SQLite hands timestamps back without tzinfo
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_domain(model: PublicKeyModel) -> PublicKey:
    return PublicKey(
        id=model.id,
        owner_id=model.owner_id,
        name=model.name,
        fingerprint=model.fingerprint,
        content=model.content,
        created_at=_aware(model.created_at),
        updated_at=_aware(model.updated_at),
    )


class SQLAlchemyKeyRegistry(KeyRegistry):
    """Key registry on top of the public_keys table."""
    
    def __init__(self, connection: DatabaseConnection):
        self.connection = connection
    
    async def exists(self, key: PublicKey) -> bool:
        async with self.connection.get_session() as session:
            return await PublicKeyRepository(session).exists_by_owner_and_name(
                key.owner_id, key.name
            )
    
    async def exists_by_fingerprint(self, fingerprint: str) -> bool:
        async with self.connection.get_session() as session:
            return await PublicKeyRepository(session).exists_by_fingerprint(fingerprint)
    
    async def insert(self, key: PublicKey) -> PublicKey:
        now = utcnow()
        model = PublicKeyModel(
            owner_id=key.owner_id,
            name=key.name,
            fingerprint=key.fingerprint,
            content=key.content,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self.connection.get_session() as session:
                await PublicKeyRepository(session).save(model)
                return to_domain(model)
        except RepositoryError as e:
            # The failed session is gone; ask again which constraint tripped
            if await self.exists_by_fingerprint(key.fingerprint):
                raise DuplicateKeyError("fingerprint", key.fingerprint) from e
            raise DuplicateKeyError("name", key.name) from e
    
    async def delete(self, key: PublicKey) -> None:
        async with self.connection.get_session() as session:
            if not await PublicKeyRepository(session).delete(key.id):
                raise KeyNotFoundError(key.id)
    
    async def update(self, key: PublicKey) -> PublicKey:
        try:
            async with self.connection.get_session() as session:
                repository = PublicKeyRepository(session)
                model = await repository.find_by_id(key.id)
                if model is None:
                    raise KeyNotFoundError(key.id)
                model.name = key.name
                model.updated_at = utcnow()
                await repository.save(model)
                return to_domain(model)
        except RepositoryError as e:
            raise DuplicateKeyError("name", key.name) from e
    
    async def get_by_id(self, key_id: int) -> PublicKey:
        async with self.connection.get_session() as session:
            model = await PublicKeyRepository(session).find_by_id(key_id)
            if model is None:
                raise KeyNotFoundError(key_id)
            return to_domain(model)
    
    async def list_by_owner(self, owner_id: int) -> List[PublicKey]:
        async with self.connection.get_session() as session:
            models = await PublicKeyRepository(session).find_by_owner(owner_id)
            return [to_domain(model) for model in models]
    
    async def iterate_all(self) -> AsyncIterator[PublicKey]:
        async with self.connection.get_session() as session:
            async for model in PublicKeyRepository(session).iterate():
                yield to_domain(model)
