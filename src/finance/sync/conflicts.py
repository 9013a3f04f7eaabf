"""
Conflict detection for client-submitted transactions.

A conflict is binary: the record either applies cleanly or it does not, with
a ConflictDetail saying why. Nothing here writes to the database.

Rules, in order:
  1. The referenced account or category no longer exists for this user
     (absent, soft-deleted, or owned by another user). Always a conflict.
  2. The server already holds a live transaction that looks like the same
     entry (same account, amount, type, date, similar description). Skipped
     when the client forces the write.
"""
import logging
from datetime import datetime
from typing import Optional, Type

from sqlmodel import Session, select

from finance.models.ledger import Account, Category, Transaction
from finance.sync.schemas import ConflictDetail, TransactionPayload

logger = logging.getLogger(__name__)

# Descriptions are compared on this many leading characters
DESCRIPTION_MATCH_CHARS = 20


class ConflictDetector:
    def __init__(self, session: Session):
        self.session = session

    def detect(
        self,
        user_id: int,
        payload: TransactionPayload,
        created_at: datetime,
        *,
        force: bool = False,
    ) -> Optional[ConflictDetail]:
        """
        Decide whether the proposed transaction conflicts with server state.

        Args:
            user_id: Owner of the submission.
            payload: Proposed transaction fields.
            created_at: When the client created the record (for the detail).
            force: Apply despite a duplicate match. Missing references are
                   still reported.

        Returns:
            None when the record can be applied, else a ConflictDetail.
        """
        client_data = payload.model_dump(mode="json")
        client_data["created_at"] = created_at.isoformat()

        detail = self.missing_reference(user_id, payload, client_data=client_data)
        if detail is not None:
            return detail
        if force:
            return None

        duplicate = self._find_duplicate(user_id, payload)
        if duplicate is not None:
            logger.info(
                "User %s: client transaction matches existing transaction %s",
                user_id,
                duplicate.id,
            )
            return ConflictDetail(
                type="duplicate_transaction",
                message=(
                    f"A transaction of {duplicate.amount} on {duplicate.date.isoformat()} "
                    f"already exists for account {duplicate.account_id}"
                ),
                fields=["account_id", "amount", "type", "date", "description"],
                server_data={
                    "id": duplicate.id,
                    "amount": str(duplicate.amount),
                    "date": duplicate.date.isoformat(),
                    "description": duplicate.description,
                    "created_at": duplicate.created_at.isoformat(),
                },
                client_data=client_data,
            )
        return None

    def missing_reference(
        self,
        user_id: int,
        payload: TransactionPayload,
        *,
        client_data: Optional[dict] = None,
    ) -> Optional[ConflictDetail]:
        """Report the first of account/category that does not exist for this user."""
        if client_data is None:
            client_data = payload.model_dump(mode="json")
        if self._owned(Account, payload.account_id, user_id) is None:
            return ConflictDetail(
                type="missing_account",
                message=f"Account {payload.account_id} no longer exists for this user",
                fields=["account_id"],
                client_data=client_data,
            )
        if self._owned(Category, payload.category_id, user_id) is None:
            return ConflictDetail(
                type="missing_category",
                message=f"Category {payload.category_id} no longer exists for this user",
                fields=["category_id"],
                client_data=client_data,
            )
        return None

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _owned(self, model: Type, row_id: int, user_id: int):
        return self.session.exec(
            select(model).where(
                model.id == row_id,
                model.user_id == user_id,
                model.deleted_at.is_(None),
            )
        ).first()

    def _find_duplicate(self, user_id: int, payload: TransactionPayload) -> Optional[Transaction]:
        prefix = payload.description[:DESCRIPTION_MATCH_CHARS]
        return self.session.exec(
            select(Transaction).where(
                Transaction.user_id == user_id,
                Transaction.account_id == payload.account_id,
                Transaction.amount == payload.amount,
                Transaction.type == payload.type.value,
                Transaction.date == payload.date,
                Transaction.description.contains(prefix, autoescape=True),
                Transaction.deleted_at.is_(None),
            )
        ).first()
