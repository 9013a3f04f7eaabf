"""Sync bookkeeping models: session audit log, offline records, checkpoints."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from finance.models.common import utcnow


class SyncType(str, Enum):
    INCREMENTAL = "incremental"
    FULL = "full"


class SyncStatus(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class RecordStatus(str, Enum):
    PENDING = "pending"
    SYNCED = "synced"
    CONFLICT = "conflict"


class SyncSession(SQLModel, table=True):
    """
    One row per sync attempt.

    Created as "started" and moved exactly once to "completed" or "failed".
    error_message is only set on failure.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    device_id: Optional[str] = Field(default=None, index=True)
    sync_type: str = SyncType.INCREMENTAL.value
    status: str = Field(default=SyncStatus.STARTED.value, index=True)
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    items_synced: int = 0
    conflicts: int = 0
    errors: int = 0
    sync_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    error_message: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != SyncStatus.STARTED.value

    @property
    def duration_seconds(self) -> Optional[int]:
        if self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds())


class PendingOfflineRecord(SQLModel, table=True):
    """
    A client-submitted transaction and the outcome of reconciling it.

    (user_id, client_id) is unique at the database level; this index is what
    stops two concurrent deliveries of the same client record from both
    creating a transaction.
    """

    __table_args__ = (
        UniqueConstraint("user_id", "client_id", name="uq_offline_record_user_client"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    device_id: Optional[str] = Field(default=None, index=True)
    client_id: str
    transaction_data: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    sync_status: str = Field(default=RecordStatus.PENDING.value, index=True)
    conflict: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    last_error: Optional[str] = None
    transaction_id: Optional[int] = Field(default=None, foreign_key="transactions.id")
    created_at_client: datetime
    synced_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"onupdate": utcnow})


class SyncCheckpoint(SQLModel, table=True):
    """Last full-sync boundary handed to a device, written with the session completion."""

    __table_args__ = (
        UniqueConstraint("user_id", "device_id", name="uq_checkpoint_user_device"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    device_id: str
    checkpoint_at: datetime
    session_id: Optional[int] = None
    updated_at: datetime = Field(default_factory=utcnow, sa_column_kwargs={"onupdate": utcnow})
