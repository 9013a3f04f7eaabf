"""
FullSyncPlanner: computes what a device must pull to catch up.

With a checkpoint, every requested kind returns rows whose updated_at is
strictly after it, plus the ids soft-deleted after it. Without one, snapshot
kinds return every live row and transactions are limited to a recent window
so a first sync stays small. The new checkpoint is the planning start time.
"""
import calendar
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlmodel import Session, select

from finance.models.common import to_naive_utc, utcnow
from finance.models.ledger import Account, Bill, Budget, Category, FinancialGoal, Transaction
from finance.sync.schemas import EntityKind

ENTITY_MODELS = {
    EntityKind.ACCOUNTS: Account,
    EntityKind.CATEGORIES: Category,
    EntityKind.BUDGETS: Budget,
    EntityKind.GOALS: FinancialGoal,
    EntityKind.BILLS: Bill,
    EntityKind.TRANSACTIONS: Transaction,
}


@dataclass
class SyncDelta:
    checkpoint: datetime
    changes: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)
    deleted: Dict[str, List[int]] = field(default_factory=dict)

    @property
    def total_items(self) -> int:
        return sum(len(rows) for rows in self.changes.values())

    @property
    def total_deleted(self) -> int:
        return sum(len(ids) for ids in self.deleted.values())


def months_before(day: date, months: int) -> date:
    """Same day-of-month `months` earlier, clamped to the month's last day."""
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


class FullSyncPlanner:
    def __init__(self, session: Session, transaction_window_months: int = 3):
        self.session = session
        self.transaction_window_months = transaction_window_months

    def plan(
        self,
        user_id: int,
        last_sync: Optional[datetime],
        include: Iterable[EntityKind],
        now: Optional[datetime] = None,
    ) -> SyncDelta:
        """
        Build the delta for one user.

        Args:
            user_id: Owner whose rows are returned.
            last_sync: Client checkpoint, or None for a first sync.
            include: Entity kinds to return; duplicates are ignored.
            now: Planning start time; becomes the new checkpoint.

        Raises:
            Any storage error. Callers must not return a partial delta.
        """
        checkpoint = now or utcnow()
        since = to_naive_utc(last_sync)
        kinds = list(dict.fromkeys(EntityKind(k) for k in include))

        delta = SyncDelta(checkpoint=checkpoint)
        for kind in kinds:
            rows = self._changed_rows(kind, user_id, since, checkpoint)
            delta.changes[kind.value] = [row.model_dump(mode="json") for row in rows]

        if since is not None:
            for kind in kinds:
                ids = self._deleted_ids(kind, user_id, since)
                if ids:
                    delta.deleted[kind.value] = ids
        return delta

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _changed_rows(self, kind: EntityKind, user_id: int, since: Optional[datetime], now: datetime):
        model = ENTITY_MODELS[kind]
        query = select(model).where(model.user_id == user_id, model.deleted_at.is_(None))
        if since is not None:
            query = query.where(model.updated_at > since)
        elif kind is EntityKind.TRANSACTIONS:
            window_start = months_before(now.date(), self.transaction_window_months)
            query = query.where(Transaction.date >= window_start)

        if kind is EntityKind.TRANSACTIONS:
            query = query.order_by(Transaction.date.desc(), Transaction.id.desc())
        else:
            query = query.order_by(model.id)
        return self.session.exec(query).all()

    def _deleted_ids(self, kind: EntityKind, user_id: int, since: datetime) -> List[int]:
        model = ENTITY_MODELS[kind]
        return list(
            self.session.exec(
                select(model.id).where(
                    model.user_id == user_id,
                    model.deleted_at.is_not(None),
                    model.deleted_at > since,
                ).order_by(model.id)
            ).all()
        )
