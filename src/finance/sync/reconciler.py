"""
TransactionReconciler: applies one client-submitted transaction.

Flow for a single record:
  1. Idempotency lookup. Already synced → return the existing server id,
     write nothing.
  2. Conflict detection. Conflict (and not forced past it) → store the
     PendingOfflineRecord as "conflict" with the detail, return conflict.
  3. Otherwise create the Transaction, move the account balance, record
     the balance history, and mark the PendingOfflineRecord "synced".

The reconciler only flushes. Commit/rollback belongs to the caller, which
decides whether a batch is one unit of work or one per record.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlmodel import Session

from finance.models.common import to_naive_utc, utcnow
from finance.models.ledger import Account, AccountBalanceHistory, Transaction
from finance.models.sync import PendingOfflineRecord, RecordStatus
from finance.sync.conflicts import ConflictDetector
from finance.sync.idempotency import IdempotencyStore
from finance.sync.schemas import OfflineTransaction, RecordResult, TransactionPayload

logger = logging.getLogger(__name__)


class TransactionReconciler:
    """Decides synced / conflict for one record and applies it."""

    def __init__(
        self,
        session: Session,
        store: Optional[IdempotencyStore] = None,
        detector: Optional[ConflictDetector] = None,
    ):
        self.session = session
        self.store = store or IdempotencyStore(session)
        self.detector = detector or ConflictDetector(session)

    def reconcile(
        self,
        user_id: int,
        device_id: Optional[str],
        item: OfflineTransaction,
        *,
        force: bool = False,
    ) -> RecordResult:
        """
        Reconcile one offline transaction.

        Raises:
            sqlalchemy.exc.IntegrityError: a concurrent delivery claimed the
                same client id first.
            Any storage error from creating rows.
        """
        client_id = item.client_id
        created_at = to_naive_utc(item.created_at)

        record = self.store.find(user_id, client_id)
        if self.store.is_applied(record):
            return RecordResult.synced(client_id, record.transaction_id)

        detail = self.detector.detect(user_id, item.data, created_at, force=force)

        data = item.data.model_dump(mode="json")
        if record is None:
            record = self.store.claim(
                PendingOfflineRecord(
                    user_id=user_id,
                    device_id=device_id,
                    client_id=client_id,
                    transaction_data=data,
                    created_at_client=created_at,
                )
            )
        else:
            record.device_id = device_id
            record.transaction_data = data
            record.created_at_client = created_at

        if detail is not None:
            record.sync_status = RecordStatus.CONFLICT.value
            record.conflict = detail.model_dump(mode="json")
            record.last_error = None
            self.session.add(record)
            self.session.flush()
            logger.info("Client record %s conflicted: %s", client_id, detail.type)
            return RecordResult.conflicted(client_id, detail)

        transaction = self.apply(
            user_id, item.data, device_id=device_id, client_created_at=created_at
        )
        self.mark_synced(record, transaction.id)
        return RecordResult.synced(client_id, transaction.id)

    def apply(
        self,
        user_id: int,
        payload: TransactionPayload,
        *,
        device_id: Optional[str] = None,
        client_created_at: Optional[datetime] = None,
    ) -> Transaction:
        """Create the transaction row and move the account balance."""
        transaction = self._create_transaction(
            user_id, payload, device_id=device_id, client_created_at=client_created_at
        )
        self._apply_to_balance(transaction)
        return transaction

    def mark_synced(
        self,
        record: PendingOfflineRecord,
        transaction_id: Optional[int],
        data: Optional[dict] = None,
    ) -> None:
        """Link a record to its server transaction and clear any conflict."""
        if data is not None:
            record.transaction_data = data
        record.sync_status = RecordStatus.SYNCED.value
        record.transaction_id = transaction_id
        record.conflict = None
        record.last_error = None
        record.synced_at = utcnow()
        self.session.add(record)
        self.session.flush()

    def record_failure(
        self,
        user_id: int,
        device_id: Optional[str],
        item: OfflineTransaction,
        message: str,
    ) -> PendingOfflineRecord:
        """
        Keep a failed record around as "pending" so it shows up in status and
        can be retried. Call after the failed unit of work was rolled back.
        """
        record = self.store.find(user_id, item.client_id)
        if record is None:
            record = PendingOfflineRecord(
                user_id=user_id,
                device_id=device_id,
                client_id=item.client_id,
                transaction_data=item.data.model_dump(mode="json"),
                created_at_client=to_naive_utc(item.created_at),
            )
        record.last_error = message
        self.session.add(record)
        self.session.flush()
        return record

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _create_transaction(
        self,
        user_id: int,
        payload: TransactionPayload,
        *,
        device_id: Optional[str],
        client_created_at: Optional[datetime],
    ) -> Transaction:
        transaction = Transaction(
            user_id=user_id,
            account_id=payload.account_id,
            category_id=payload.category_id,
            description=payload.description,
            amount=payload.amount,
            type=payload.type.value,
            date=payload.date,
            notes=payload.notes,
            reference_number=payload.reference_number,
            is_cleared=payload.is_cleared,
            cleared_at=utcnow() if payload.is_cleared else None,
            synced_from_offline=True,
            client_created_at=client_created_at,
            device_id=device_id,
        )
        self.session.add(transaction)
        self.session.flush()
        return transaction

    def _apply_to_balance(self, transaction: Transaction) -> None:
        account = self.session.get(Account, transaction.account_id)
        change = transaction.signed_amount
        account.balance = Decimal(account.balance) + change
        self.session.add(account)
        self.session.add(
            AccountBalanceHistory(
                account_id=account.id,
                balance=account.balance,
                change_amount=change,
                change_type="transaction",
            )
        )
        self.session.flush()
