"""Base model classes for all SQLAlchemy models."""

from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from sqlalchemy import Boolean, DateTime
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from core.utils import utc_now


class UTCDateTime(TypeDecorator):
    """Timestamp stored as naive UTC, returned as aware UTC.

    SQLite and ``TIMESTAMP WITHOUT TIME ZONE`` columns drop tzinfo, so
    every value is normalized to UTC before it is written.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


class Base(DeclarativeBase):
    """Base model class with common fields for all models."""

    pass


class SoftDeleteMixin:
    """Mixin that adds soft delete capability to any model.

    Adds `deleted_at` and `is_deleted` columns. When an entity is
    "deleted", `deleted_at` is set to the current timestamp and
    `is_deleted` is flipped to True. The row remains in the DB and
    stays visible through the "all" query view.
    """

    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True, default=None, index=True
    )
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, default=False, index=True
    )

    def soft_delete(self) -> None:
        """Mark this record as deleted."""
        self.is_deleted = True
        self.deleted_at = utc_now()

    def restore(self) -> None:
        """Restore a soft-deleted record."""
        self.is_deleted = False
        self.deleted_at = None


class RecordModel(Base):
    """Abstract base for rows that are never soft-deleted (runs, executions, audit).

    Provides:
    - id: UUID primary key
    - created_at: insertion timestamp
    """

    __abstract__ = True

    id: Mapped[str] = mapped_column(primary_key=True, default=lambda: str(uuid4()))
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utc_now, index=True
    )


class BaseModel(SoftDeleteMixin, RecordModel):
    """Abstract base model with timestamps and soft delete.

    Definition-side models (workflows, node templates, edges) inherit
    from this. Provides:
    - id: UUID primary key
    - created_at / updated_at: automatic timestamps
    - is_deleted / deleted_at: soft delete support
    """

    __abstract__ = True

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), default=utc_now, onupdate=utc_now
    )
