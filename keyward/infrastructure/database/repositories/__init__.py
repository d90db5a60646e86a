from .base import BaseRepository, RepositoryError
from .public_key_repository import PublicKeyRepository

__all__ = ["BaseRepository", "RepositoryError", "PublicKeyRepository"]
