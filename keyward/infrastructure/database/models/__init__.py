from .base import Base, IntegerIdModel, TimestampedModel, utcnow
from .public_key import PublicKeyModel

__all__ = ["Base", "IntegerIdModel", "TimestampedModel", "PublicKeyModel", "utcnow"]
