"""
Base model class for append-only records
"""

from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, Integer, event

from app.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes (SQLite round-trips) as UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AppendOnlyModel(Base):
    """
    Abstract base for rows that are written once and never changed.
    Updates and deletes are refused at flush time.
    """
    __abstract__ = True

    id = Column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True
    )
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        index=True
    )


class ImmutableRecordError(RuntimeError):
    """Raised when code tries to rewrite an append-only row"""


@event.listens_for(AppendOnlyModel, "before_update", propagate=True)
def _refuse_update(mapper, connection, target):
    raise ImmutableRecordError(
        f"{type(target).__name__} {target.id} is append-only and cannot be updated"
    )


@event.listens_for(AppendOnlyModel, "before_delete", propagate=True)
def _refuse_delete(mapper, connection, target):
    raise ImmutableRecordError(
        f"{type(target).__name__} {target.id} is append-only and cannot be deleted"
    )
