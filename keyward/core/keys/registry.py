"""Key registry interface consumed by the key service"""

from abc import ABC, abstractmethod
from typing import AsyncIterator, List

from keyward.core.keys.key_types import PublicKey


class KeyRegistry(ABC):
    """Durable store of public key records"""

    @abstractmethod
    async def exists(self, key: PublicKey) -> bool:
        """Whether the owner already has a key with this name"""

    @abstractmethod
    async def exists_by_fingerprint(self, fingerprint: str) -> bool:
        """Whether any owner has registered this fingerprint"""

    @abstractmethod
    async def insert(self, key: PublicKey) -> PublicKey:
        """Persist a new key and return it with id and timestamps set"""

    @abstractmethod
    async def delete(self, key: PublicKey) -> None:
        """Delete a key, raising KeyNotFoundError for unknown ids"""

    @abstractmethod
    async def update(self, key: PublicKey) -> PublicKey:
        """Update key metadata; content and fingerprint are left untouched"""

    @abstractmethod
    async def get_by_id(self, key_id: int) -> PublicKey:
        """Fetch one key, raising KeyNotFoundError for unknown ids"""

    @abstractmethod
    async def list_by_owner(self, owner_id: int) -> List[PublicKey]:
        """All keys of one owner in id order"""

    @abstractmethod
    def iterate_all(self) -> AsyncIterator[PublicKey]:
        """Every registered key in id order"""
