from .connection import DatabaseConnection
from .key_registry import SQLAlchemyKeyRegistry

__all__ = ["DatabaseConnection", "SQLAlchemyKeyRegistry"]
