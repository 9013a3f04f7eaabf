"""
SyncService: orchestrates offline sync for one request.

Flow for a transaction push:
  1. Open a SyncSession (status="started", committed on its own)
  2. Reconcile each record in submission order
  3. Close the SyncSession (status="completed") with the counters

Two batch modes:
  isolated (default)  each record is its own unit of work. An unexpected
                      error rolls back that record only and is reported as
                      an "error" result; the rest of the batch proceeds.
  strict              the whole batch and the session completion commit
                      together. Any exception rolls everything back.

On any exception that escapes: roll back, mark the session "failed", raise
SyncError. Conflicts are results, never exceptions.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from finance.models.common import iso_utc, utcnow
from finance.models.settings import SyncPreferences
from finance.models.sync import (
    PendingOfflineRecord,
    RecordStatus,
    SyncCheckpoint,
    SyncSession,
    SyncStatus,
    SyncType,
)
from finance.sync.planner import FullSyncPlanner
from finance.sync.reconciler import TransactionReconciler
from finance.sync.resolver import ConflictResolver
from finance.sync.schemas import (
    ConflictDetail,
    FullSyncRequest,
    OfflineTransaction,
    RecordOutcome,
    RecordResult,
    ResolutionResult,
    ResolveConflictsRequest,
    SyncTransactionsRequest,
)
from finance.sync.session_log import SyncSessionLog

logger = logging.getLogger(__name__)

CONCURRENT_SUBMISSION = "client record was submitted concurrently; retry the sync"


class SyncError(RuntimeError):
    """A sync unit of work was aborted and rolled back."""

    def __init__(self, message: str, session_id: Optional[int] = None):
        super().__init__(message)
        self.session_id = session_id


@dataclass
class BatchResult:
    session_id: int
    results: List[RecordResult]

    def _with(self, outcome: RecordOutcome) -> List[RecordResult]:
        return [r for r in self.results if r.status is outcome]

    @property
    def synced(self) -> List[RecordResult]:
        return self._with(RecordOutcome.SYNCED)

    @property
    def conflicts(self) -> List[RecordResult]:
        return self._with(RecordOutcome.CONFLICT)

    @property
    def errors(self) -> List[RecordResult]:
        return self._with(RecordOutcome.ERROR)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "synced": [{"client_id": r.client_id, "server_id": r.server_id} for r in self.synced],
            "conflicts": [
                {"client_id": r.client_id, "conflict": r.conflict.model_dump(mode="json")}
                for r in self.conflicts
            ],
            "errors": [{"client_id": r.client_id, "error": r.error} for r in self.errors],
            "results": [r.model_dump(mode="json") for r in self.results],
            "session_id": self.session_id,
        }


class SyncService:
    """Request-scoped facade over the sync components."""

    def __init__(self, session: Session, preferences: SyncPreferences):
        self.session = session
        self.preferences = preferences
        self.log = SyncSessionLog(session)
        self.reconciler = TransactionReconciler(session)

    # ─── Push ─────────────────────────────────────────────────────────────────

    def sync_transactions(self, user_id: int, request: SyncTransactionsRequest) -> BatchResult:
        """
        Reconcile a batch of offline transactions.

        Raises:
            SyncError: the batch was aborted (session marked failed).
        """
        strict = request.strict if request.strict is not None else self.preferences.strict_batch
        sync_session = self._start(
            user_id,
            request.device_id,
            SyncType.INCREMENTAL,
            {
                "transactions_count": len(request.transactions),
                "force": request.force,
                "mode": "strict" if strict else "isolated",
            },
        )

        try:
            if strict:
                results = [
                    self.reconciler.reconcile(user_id, request.device_id, item, force=request.force)
                    for item in request.transactions
                ]
            else:
                results = [
                    self._reconcile_isolated(user_id, request.device_id, item, force=request.force)
                    for item in request.transactions
                ]
            batch = BatchResult(session_id=sync_session.id, results=results)
            # In strict mode this commit also publishes the batch itself.
            self.log.complete(
                sync_session,
                items_synced=len(batch.synced),
                conflicts=len(batch.conflicts),
                errors=len(batch.errors),
            )
        except Exception as exc:
            self._abort(sync_session, exc, "Failed to sync transactions")

        return batch

    # ─── Pull ─────────────────────────────────────────────────────────────────

    def full_sync(self, user_id: int, request: FullSyncRequest) -> Dict[str, Any]:
        """
        Compute the delta since the client's checkpoint.

        Raises:
            SyncError: a query failed; no partial data is returned.
        """
        include = list(dict.fromkeys(request.include))
        sync_session = self._start(
            user_id,
            request.device_id,
            SyncType.FULL,
            {
                "include": [kind.value for kind in include],
                "last_sync": iso_utc(request.last_sync) if request.last_sync else None,
            },
        )
        planner = FullSyncPlanner(
            self.session,
            transaction_window_months=self.preferences.initial_transaction_window_months,
        )
        try:
            delta = planner.plan(user_id, request.last_sync, include, now=sync_session.started_at)
            self.log.complete(
                sync_session,
                items_synced=delta.total_items,
                extra={"deleted_items": delta.total_deleted},
                checkpoint_at=delta.checkpoint,
            )
        except Exception as exc:
            self._abort(sync_session, exc, "Failed to perform full sync")

        return {
            "sync_timestamp": iso_utc(delta.checkpoint),
            "data": delta.changes,
            "deleted": delta.deleted,
            "meta": {"total_items": delta.total_items, "sync_id": sync_session.id},
        }

    # ─── Conflicts ────────────────────────────────────────────────────────────

    def conflicts(self, user_id: int) -> List[Dict[str, Any]]:
        records = self.session.exec(
            select(PendingOfflineRecord)
            .where(
                PendingOfflineRecord.user_id == user_id,
                PendingOfflineRecord.sync_status == RecordStatus.CONFLICT.value,
            )
            .order_by(PendingOfflineRecord.id)
        ).all()
        return [
            {
                "id": r.id,
                "client_id": r.client_id,
                "device_id": r.device_id,
                "transaction_data": r.transaction_data,
                "conflict": r.conflict,
                "created_at_client": iso_utc(r.created_at_client),
                "created_at": iso_utc(r.created_at),
            }
            for r in records
        ]

    def resolve_conflicts(
        self, user_id: int, request: ResolveConflictsRequest
    ) -> List[ResolutionResult]:
        """Apply every resolution in one unit of work."""
        resolver = ConflictResolver(self.session, self.reconciler)
        try:
            results = resolver.resolve(user_id, request.resolutions)
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            logger.exception("Failed to resolve conflicts for user %s", user_id)
            raise SyncError(str(exc)) from exc
        return results

    # ─── Status ───────────────────────────────────────────────────────────────

    def status(self, user_id: int, device_id: Optional[str] = None) -> Dict[str, Any]:
        last = self.log.last_completed(user_id)
        pending = self._count_records(user_id, RecordStatus.PENDING)
        conflicts = self._count_records(user_id, RecordStatus.CONFLICT)
        return {
            "is_synced": pending == 0 and conflicts == 0,
            "sync_in_progress": self.log.is_syncing(user_id),
            "last_sync": self._session_summary(last) if last else None,
            "pending_items": {
                "transactions": pending,
                "conflicts": conflicts,
                "total": pending + conflicts,
            },
            "device_id": device_id,
            "online": True,
        }

    def last_sync(self, user_id: int, device_id: Optional[str] = None) -> Dict[str, Any]:
        last = self.log.last_completed(user_id, device_id)
        checkpoint = self.log.checkpoint(user_id, device_id) if device_id else None
        checkpoint_at = iso_utc(checkpoint.checkpoint_at) if checkpoint else None
        if last is None:
            return {"last_sync": None, "has_synced": False, "checkpoint": checkpoint_at}
        return {
            "last_sync": iso_utc(last.completed_at),
            "has_synced": True,
            "checkpoint": checkpoint_at,
            "sync_type": last.sync_type,
            "items_synced": last.items_synced,
            "duration": last.duration_seconds,
        }

    def statistics(self, user_id: int) -> Dict[str, Any]:
        completed = self.session.exec(
            select(SyncSession).where(
                SyncSession.user_id == user_id,
                SyncSession.status == SyncStatus.COMPLETED.value,
            )
        ).all()
        durations = [s.duration_seconds for s in completed if s.duration_seconds is not None]
        week_ago = utcnow() - timedelta(days=7)
        recent = [s for s in completed if s.completed_at and s.completed_at > week_ago]
        last = max((s.completed_at for s in completed if s.completed_at), default=None)
        return {
            "total_syncs": self._count_sessions(user_id),
            "successful_syncs": len(completed),
            "failed_syncs": self._count_sessions(user_id, SyncStatus.FAILED),
            "pending_items": self._count_records(user_id, RecordStatus.PENDING),
            "conflicts": self._count_records(user_id, RecordStatus.CONFLICT),
            "last_sync": iso_utc(last) if last else None,
            "average_sync_time": round(sum(durations) / len(durations), 2) if durations else None,
            # Average days between syncs over the last week
            "sync_frequency": round(7 / len(recent), 1) if recent else None,
        }

    # ─── Housekeeping ─────────────────────────────────────────────────────────

    def clear(self, user_id: int, device_id: Optional[str] = None) -> Dict[str, int]:
        """Delete offline records, sessions and checkpoints, optionally for one device."""
        counts = {}
        try:
            for key, model in (
                ("deleted_records", PendingOfflineRecord),
                ("deleted_checkpoints", SyncCheckpoint),
                ("deleted_sessions", SyncSession),
            ):
                query = select(model).where(model.user_id == user_id)
                if device_id:
                    query = query.where(model.device_id == device_id)
                rows = self.session.exec(query).all()
                for row in rows:
                    self.session.delete(row)
                counts[key] = len(rows)
            self.session.commit()
        except Exception as exc:
            self.session.rollback()
            logger.exception("Failed to clear sync data for user %s", user_id)
            raise SyncError(str(exc)) from exc
        logger.info("Cleared sync data for user %s device %s: %s", user_id, device_id, counts)
        return counts

    def cleanup(self, retention_days: int, stale_minutes: int) -> Dict[str, int]:
        """
        Remove old completed sessions and synced records across all users,
        and fail sessions abandoned mid-flight.
        """
        now = utcnow()
        cutoff = now - timedelta(days=retention_days)
        stale = self.log.sweep_stale(now - timedelta(minutes=stale_minutes))

        old_sessions = self.session.exec(
            select(SyncSession).where(
                SyncSession.status == SyncStatus.COMPLETED.value,
                SyncSession.started_at < cutoff,
            )
        ).all()
        old_records = self.session.exec(
            select(PendingOfflineRecord).where(
                PendingOfflineRecord.sync_status == RecordStatus.SYNCED.value,
                PendingOfflineRecord.synced_at < cutoff,
            )
        ).all()
        for row in [*old_sessions, *old_records]:
            self.session.delete(row)
        self.session.commit()

        counts = {
            "stale_sessions": stale,
            "deleted_sessions": len(old_sessions),
            "deleted_records": len(old_records),
        }
        logger.info("Cleaned up old sync data: %s", counts)
        return counts

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _start(self, user_id: int, device_id: str, kind: SyncType, metadata: Dict[str, Any]) -> SyncSession:
        try:
            return self.log.start(user_id, device_id, kind, metadata)
        except Exception as exc:
            self.session.rollback()
            logger.exception("Could not open sync session for user %s", user_id)
            raise SyncError(str(exc)) from exc

    def _abort(self, sync_session: SyncSession, exc: Exception, message: str) -> None:
        self.session.rollback()
        logger.exception("%s (session %s)", message, sync_session.id)
        self.log.fail(sync_session, str(exc) or type(exc).__name__)
        raise SyncError(str(exc), session_id=sync_session.id) from exc

    def _reconcile_isolated(
        self, user_id: int, device_id: str, item: OfflineTransaction, *, force: bool
    ) -> RecordResult:
        try:
            result = self.reconciler.reconcile(user_id, device_id, item, force=force)
            self.session.commit()
            return result
        except IntegrityError:
            self.session.rollback()
            winner = self.reconciler.store.find(user_id, item.client_id)
            if winner is None:
                raise
            logger.info("Client record %s was claimed by a concurrent sync", item.client_id)
            return self._result_from_record(winner)
        except Exception as exc:
            self.session.rollback()
            logger.exception("Client record %s failed; continuing batch", item.client_id)
            message = str(exc) or type(exc).__name__
            self.reconciler.record_failure(user_id, device_id, item, message)
            self.session.commit()
            return RecordResult.failed(item.client_id, message)

    @staticmethod
    def _result_from_record(record: PendingOfflineRecord) -> RecordResult:
        if record.sync_status == RecordStatus.SYNCED.value:
            return RecordResult.synced(record.client_id, record.transaction_id)
        if record.sync_status == RecordStatus.CONFLICT.value and record.conflict:
            return RecordResult.conflicted(
                record.client_id, ConflictDetail.model_validate(record.conflict)
            )
        return RecordResult.failed(record.client_id, CONCURRENT_SUBMISSION)

    def _count_records(self, user_id: int, status: RecordStatus) -> int:
        return self.session.exec(
            select(func.count(PendingOfflineRecord.id)).where(
                PendingOfflineRecord.user_id == user_id,
                PendingOfflineRecord.sync_status == status.value,
            )
        ).one()

    def _count_sessions(self, user_id: int, status: Optional[SyncStatus] = None) -> int:
        query = select(func.count(SyncSession.id)).where(SyncSession.user_id == user_id)
        if status is not None:
            query = query.where(SyncSession.status == status.value)
        return self.session.exec(query).one()

    @staticmethod
    def _session_summary(sync_session: SyncSession) -> Dict[str, Any]:
        return {
            "timestamp": iso_utc(sync_session.completed_at),
            "type": sync_session.sync_type,
            "duration": sync_session.duration_seconds,
            "items_synced": sync_session.items_synced,
        }
