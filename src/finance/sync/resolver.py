"""Applies a client's chosen resolution to stored conflicts."""
import logging
from typing import List, Optional

from pydantic import ValidationError
from sqlmodel import Session, select

from finance.models.sync import PendingOfflineRecord, RecordStatus
from finance.sync.reconciler import TransactionReconciler
from finance.sync.schemas import (
    Merge,
    Resolution,
    ResolutionResult,
    TransactionPayload,
    UseClient,
    UseServer,
)

logger = logging.getLogger(__name__)

RESOLVED = "resolved"
NOT_FOUND = "not_found"
ERROR = "error"


class ConflictResolver:
    """
    use_client: apply the payload the client originally sent.
    use_server: keep the server's row; the client record points at it.
    merge:      apply the replacement payload supplied with the resolution.

    Flushes only; the caller owns the unit of work.
    """

    def __init__(self, session: Session, reconciler: Optional[TransactionReconciler] = None):
        self.session = session
        self.reconciler = reconciler or TransactionReconciler(session)

    def resolve(self, user_id: int, resolutions: List[Resolution]) -> List[ResolutionResult]:
        results = []
        for resolution in resolutions:
            record = self._find_conflict(user_id, resolution.conflict_id)
            if record is None:
                results.append(
                    ResolutionResult(conflict_id=resolution.conflict_id, status=NOT_FOUND)
                )
                continue

            if isinstance(resolution, UseServer):
                result = self._use_server(record)
            elif isinstance(resolution, UseClient):
                try:
                    payload = TransactionPayload.model_validate(record.transaction_data)
                except ValidationError as exc:
                    result = ResolutionResult(
                        conflict_id=record.id,
                        status=ERROR,
                        error=f"Stored client data is invalid: {exc.error_count()} errors",
                    )
                else:
                    result = self._apply(user_id, record, payload)
            elif isinstance(resolution, Merge):
                result = self._apply(user_id, record, resolution.data)
            else:
                raise TypeError(f"Unknown resolution {type(resolution).__name__}")
            results.append(result)
        return results

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _find_conflict(self, user_id: int, conflict_id: int) -> Optional[PendingOfflineRecord]:
        return self.session.exec(
            select(PendingOfflineRecord).where(
                PendingOfflineRecord.id == conflict_id,
                PendingOfflineRecord.user_id == user_id,
                PendingOfflineRecord.sync_status == RecordStatus.CONFLICT.value,
            )
        ).first()

    def _apply(
        self, user_id: int, record: PendingOfflineRecord, payload: TransactionPayload
    ) -> ResolutionResult:
        missing = self.reconciler.detector.missing_reference(user_id, payload)
        if missing is not None:
            return ResolutionResult(conflict_id=record.id, status=ERROR, error=missing.message)

        transaction = self.reconciler.apply(
            user_id,
            payload,
            device_id=record.device_id,
            client_created_at=record.created_at_client,
        )
        self.reconciler.mark_synced(record, transaction.id, data=payload.model_dump(mode="json"))
        logger.info("Conflict %s resolved into transaction %s", record.id, transaction.id)
        return ResolutionResult(conflict_id=record.id, status=RESOLVED, transaction_id=transaction.id)

    def _use_server(self, record: PendingOfflineRecord) -> ResolutionResult:
        server_data = (record.conflict or {}).get("server_data") or {}
        server_id = server_data.get("id")
        self.reconciler.mark_synced(record, server_id)
        logger.info("Conflict %s resolved in favour of server row %s", record.id, server_id)
        return ResolutionResult(conflict_id=record.id, status=RESOLVED, transaction_id=server_id)
