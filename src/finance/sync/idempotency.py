"""Lookup of client ids that have already been applied server-side."""
from typing import Optional

from sqlmodel import Session, select

from finance.models.sync import PendingOfflineRecord, RecordStatus


class IdempotencyStore:
    """
    Keyed on (user_id, client_id), backed by the unique index on
    PendingOfflineRecord. The lookup is a fast path only; claim() is what
    closes the race between two deliveries of the same record.
    """

    def __init__(self, session: Session):
        self.session = session

    def find(self, user_id: int, client_id: str) -> Optional[PendingOfflineRecord]:
        return self.session.exec(
            select(PendingOfflineRecord).where(
                PendingOfflineRecord.user_id == user_id,
                PendingOfflineRecord.client_id == client_id,
            )
        ).first()

    @staticmethod
    def is_applied(record: Optional[PendingOfflineRecord]) -> bool:
        return record is not None and record.sync_status == RecordStatus.SYNCED.value

    def applied(self, user_id: int, client_id: str) -> Optional[PendingOfflineRecord]:
        """The synced record for this client id, or None if not yet applied."""
        record = self.find(user_id, client_id)
        return record if self.is_applied(record) else None

    def claim(self, record: PendingOfflineRecord) -> PendingOfflineRecord:
        """
        Insert a new record and flush so the unique index is checked now.

        Raises:
            sqlalchemy.exc.IntegrityError: another delivery already holds
                this (user_id, client_id).
        """
        self.session.add(record)
        self.session.flush()
        return record
