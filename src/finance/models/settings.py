"""Per-user typed settings and the request-scoped preferences built from them."""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlmodel import Field, Session, SQLModel, select

from finance.config import Settings
from finance.models.common import utcnow


class UserSettings(SQLModel, table=True):
    """Typed per-user overrides. NULL columns fall back to process Settings."""

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", unique=True, index=True)
    strict_batch_sync: Optional[bool] = None
    initial_transaction_window_months: Optional[int] = None
    updated_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"onupdate": utcnow})


@dataclass(frozen=True)
class SyncPreferences:
    """Resolved sync configuration for one user, loaded once per request."""

    strict_batch: bool
    initial_transaction_window_months: int

    @classmethod
    def load(cls, session: Session, user_id: int, settings: Settings) -> "SyncPreferences":
        row = session.exec(
            select(UserSettings).where(UserSettings.user_id == user_id)
        ).first()
        strict = settings.sync_strict_batch
        window = settings.initial_transaction_window_months
        if row is not None:
            if row.strict_batch_sync is not None:
                strict = row.strict_batch_sync
            if row.initial_transaction_window_months is not None:
                window = row.initial_transaction_window_months
        return cls(
            strict_batch=strict,
            initial_transaction_window_months=window,
        )
