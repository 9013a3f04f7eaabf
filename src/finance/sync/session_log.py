"""
Sync session audit log.

Every sync call opens a session row as "started" and closes it exactly once
as "completed" or "failed". Each transition commits immediately, so the row
survives a rollback of the work it describes.

Full syncs also move the device's SyncCheckpoint, in the same commit as the
completion, so the checkpoint and the session that produced it never
disagree.
"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlmodel import Session, select

from finance.models.common import utcnow
from finance.models.sync import SyncCheckpoint, SyncSession, SyncStatus, SyncType

logger = logging.getLogger(__name__)


class SessionStateError(RuntimeError):
    """Raised when a session that already finished is completed or failed again."""


class SyncSessionLog:
    def __init__(self, session: Session):
        self.session = session

    # ─── Transitions ──────────────────────────────────────────────────────────

    def start(
        self,
        user_id: int,
        device_id: Optional[str],
        kind: SyncType,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SyncSession:
        sync_session = SyncSession(
            user_id=user_id,
            device_id=device_id,
            sync_type=SyncType(kind).value,
            status=SyncStatus.STARTED.value,
            started_at=utcnow(),
            sync_data={"device_id": device_id, **(metadata or {})},
        )
        self.session.add(sync_session)
        self.session.commit()
        self.session.refresh(sync_session)
        logger.info(
            "Sync session %s started (%s) for user %s device %s",
            sync_session.id, sync_session.sync_type, user_id, device_id,
        )
        return sync_session

    def complete(
        self,
        sync_session: SyncSession,
        *,
        items_synced: int = 0,
        conflicts: int = 0,
        errors: int = 0,
        extra: Optional[Dict[str, Any]] = None,
        checkpoint_at: Optional[datetime] = None,
    ) -> SyncSession:
        """Mark completed, merge the summary into sync_data, move the checkpoint."""
        db_session = self._load_started(sync_session)
        db_session.status = SyncStatus.COMPLETED.value
        db_session.completed_at = utcnow()
        db_session.items_synced = items_synced
        db_session.conflicts = conflicts
        db_session.errors = errors
        db_session.sync_data = {
            **(db_session.sync_data or {}),
            "items_synced": items_synced,
            "conflicts": conflicts,
            "errors": errors,
            **(extra or {}),
        }
        self.session.add(db_session)
        if checkpoint_at is not None and db_session.device_id:
            self._save_checkpoint(db_session, checkpoint_at)
        self.session.commit()
        self.session.refresh(db_session)
        logger.info(
            "Sync session %s completed: %d synced, %d conflicts, %d errors",
            db_session.id, items_synced, conflicts, errors,
        )
        return db_session

    def fail(self, sync_session: SyncSession, error: str) -> SyncSession:
        db_session = self._load_started(sync_session)
        db_session.status = SyncStatus.FAILED.value
        db_session.completed_at = utcnow()
        db_session.error_message = error or "unknown error"
        self.session.add(db_session)
        self.session.commit()
        self.session.refresh(db_session)
        logger.warning("Sync session %s failed: %s", db_session.id, db_session.error_message)
        return db_session

    def sweep_stale(self, older_than: datetime) -> int:
        """Fail sessions still "started" that began before older_than. Returns the count."""
        stale = self.session.exec(
            select(SyncSession).where(
                SyncSession.status == SyncStatus.STARTED.value,
                SyncSession.started_at < older_than,
            )
        ).all()
        now = utcnow()
        for sync_session in stale:
            sync_session.status = SyncStatus.FAILED.value
            sync_session.completed_at = now
            sync_session.error_message = "abandoned: worker did not finish the session"
            self.session.add(sync_session)
        self.session.commit()
        if stale:
            logger.warning("Marked %d abandoned sync sessions as failed", len(stale))
        return len(stale)

    # ─── Queries ──────────────────────────────────────────────────────────────

    def is_syncing(self, user_id: int) -> bool:
        return self.session.exec(
            select(SyncSession.id).where(
                SyncSession.user_id == user_id,
                SyncSession.status == SyncStatus.STARTED.value,
            )
        ).first() is not None

    def last_completed(self, user_id: int, device_id: Optional[str] = None) -> Optional[SyncSession]:
        query = select(SyncSession).where(
            SyncSession.user_id == user_id,
            SyncSession.status == SyncStatus.COMPLETED.value,
        )
        if device_id:
            query = query.where(SyncSession.device_id == device_id)
        return self.session.exec(
            query.order_by(SyncSession.completed_at.desc(), SyncSession.id.desc())
        ).first()

    def checkpoint(self, user_id: int, device_id: str) -> Optional[SyncCheckpoint]:
        return self.session.exec(
            select(SyncCheckpoint).where(
                SyncCheckpoint.user_id == user_id,
                SyncCheckpoint.device_id == device_id,
            )
        ).first()

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _load_started(self, sync_session: SyncSession) -> SyncSession:
        db_session = self.session.get(SyncSession, sync_session.id)
        if db_session is None:
            raise SessionStateError(f"Sync session {sync_session.id} does not exist")
        if db_session.is_terminal:
            raise SessionStateError(
                f"Sync session {db_session.id} is already {db_session.status}"
            )
        return db_session

    def _save_checkpoint(self, db_session: SyncSession, checkpoint_at: datetime) -> None:
        checkpoint = self.checkpoint(db_session.user_id, db_session.device_id)
        if checkpoint is None:
            checkpoint = SyncCheckpoint(
                user_id=db_session.user_id,
                device_id=db_session.device_id,
                checkpoint_at=checkpoint_at,
                session_id=db_session.id,
            )
        else:
            checkpoint.checkpoint_at = checkpoint_at
            checkpoint.session_id = db_session.id
        self.session.add(checkpoint)
