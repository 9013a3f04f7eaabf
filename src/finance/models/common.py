"""Timestamp helpers and the shared base for user-owned rows."""
from datetime import datetime, timezone
from typing import Optional

from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    """Naive UTC now. All stored timestamps are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a client-supplied datetime to naive UTC for comparison with DB values."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class OwnedRecord(SQLModel):
    """
    Columns every user-owned domain row carries.

    updated_at is bumped by the ORM on every UPDATE and is the delta key for
    full sync; deleted_at is the soft-delete tombstone.
    """

    user_id: int = Field(foreign_key="user.id", index=True)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(
        default_factory=utcnow, index=True, sa_column_kwargs={"onupdate": utcnow}
    )
    deleted_at: Optional[datetime] = Field(default=None, index=True)


def iso_utc(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with a trailing Z for a naive UTC datetime."""
    if value is None:
        return None
    return to_naive_utc(value).isoformat() + "Z"
