"""Public key database model."""
from sqlalchemy import String, Text, CheckConstraint, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .base import IntegerIdModel


class PublicKeyModel(IntegerIdModel):
    """Public key database model."""
    __tablename__ = "public_keys"
    
    owner_id: Mapped[int] = mapped_column(
        nullable=False,
        index=True
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False
    )
    fingerprint: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True
    )
    content: Mapped[str] = mapped_column(
        Text,
        nullable=False
    )
    
    __table_args__ = (
        UniqueConstraint("owner_id", "name", name="uq_public_key_owner_name"),
        CheckConstraint(
            "LENGTH(name) >= 1 AND LENGTH(name) <= 255",
            name="key_name_length"
        ),
    )
