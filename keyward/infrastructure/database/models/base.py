"""Base model classes for database entities."""
from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base model class for all database models."""
    pass


class TimestampedModel(Base):
    """Base model with timestamps."""
    __abstract__ = True
    
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )


class IntegerIdModel(TimestampedModel):
    """Base model with autoincrement integer primary key and timestamps."""
    __abstract__ = True
    
    id: Mapped[int] = mapped_column(
        primary_key=True,
        autoincrement=True
    )
