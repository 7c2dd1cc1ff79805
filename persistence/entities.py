"""
persistence/entities.py -- Base shapes every persisted aggregate inherits.

Entity        -- a 128-bit UUID identity, generated when the object is built
                 (not at flush), immutable afterwards.
AuditableEntity -- adds the seven audit/soft-delete columns:
                 created_at, created_by, updated_at, updated_by,
                 is_deleted, deleted_at, deleted_by.

The audit columns are written by persistence/interceptor.py during flush;
application code never stamps them by hand. restore() is the only
audit-related operation aggregates call directly.

Usage:
    class Course(AuditableEntity):
        __tablename__ = "courses"
        title: Mapped[str] = mapped_column(String(200))

    course = Course(title="Welding I")   # course.id is already set
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

from sqlalchemy import Boolean, DateTime, String, TypeDecorator, Uuid, false
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, validates


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """DateTime column that always hands back timezone-aware UTC values.

    SQLite has no timezone support and returns naive datetimes. Values are
    stored as naive UTC and re-tagged with UTC on the way out, so comparisons
    between freshly stamped and freshly loaded values never mix naive and
    aware datetimes.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    pass


class Entity(Base):
    __abstract__ = True

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)

    def __init__(self, **kwargs) -> None:
        kwargs.setdefault("id", uuid.uuid4())
        super().__init__(**kwargs)

    @validates("id")
    def _validate_id(self, key: str, value: uuid.UUID) -> uuid.UUID:
        current = self.__dict__.get("id")
        if current is not None and value != current:
            raise AttributeError(f"{type(self).__name__}.id is immutable once assigned.")
        return value


class AuditableEntity(Entity):
    __abstract__ = True

    created_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    created_by: Mapped[str | None] = mapped_column(String(255))
    updated_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    updated_by: Mapped[str | None] = mapped_column(String(255))
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, server_default=false(), nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    deleted_by: Mapped[str | None] = mapped_column(String(255))

    def __init__(self, **kwargs) -> None:
        kwargs.setdefault("is_deleted", False)
        super().__init__(**kwargs)

    def restore(self) -> None:
        """Undo a soft delete. The row becomes visible to default queries again."""
        self.is_deleted = False
        self.deleted_at = None
        self.deleted_by = None

    # ------------------------------------------------------------------
    # Stamping -- called by AuditableEntityInterceptor only
    # ------------------------------------------------------------------

    def mark_created(self, actor_id: str, at: datetime) -> None:
        self.created_at = at
        self.created_by = actor_id

    def mark_updated(self, actor_id: str, at: datetime) -> None:
        self.updated_at = _after(at, self.updated_at, self.created_at)
        self.updated_by = actor_id

    def mark_deleted(self, actor_id: str, at: datetime) -> None:
        self.is_deleted = True
        self.deleted_at = _after(at, self.updated_at, self.created_at)
        self.deleted_by = actor_id

    def clear_deletion(self) -> None:
        self.deleted_at = None
        self.deleted_by = None


def _after(at: datetime, *previous: datetime | None) -> datetime:
    """Return at, nudged forward one microsecond past the latest earlier stamp.

    Two commits inside the same clock tick would otherwise produce equal
    timestamps; audit stamps on a row must be strictly increasing.
    """
    latest = max((p for p in previous if p is not None), default=None)
    if latest is None or at > latest:
        return at
    return latest + timedelta(microseconds=1)
