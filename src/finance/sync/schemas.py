"""
Request payloads and result shapes for the sync endpoints.

Resolution actions are a discriminated union on "action" so a merge cannot
be submitted without its replacement payload.
"""
import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from finance.models.ledger import TransactionType


class EntityKind(str, Enum):
    ACCOUNTS = "accounts"
    CATEGORIES = "categories"
    BUDGETS = "budgets"
    GOALS = "goals"
    BILLS = "bills"
    TRANSACTIONS = "transactions"


ALL_ENTITY_KINDS = list(EntityKind)


# ─── Transaction push ─────────────────────────────────────────────────────────

class TransactionPayload(BaseModel):
    """The financial-transaction fields a client proposes."""

    model_config = ConfigDict(extra="ignore")

    account_id: int
    category_id: int
    amount: Decimal = Field(ge=0, max_digits=15, decimal_places=2)
    type: TransactionType
    date: dt.date
    description: str = Field(max_length=255)
    notes: Optional[str] = None
    reference_number: Optional[str] = None
    is_cleared: bool = True


class OfflineTransaction(BaseModel):
    client_id: str = Field(min_length=1)
    data: TransactionPayload
    created_at: dt.datetime


class SyncTransactionsRequest(BaseModel):
    transactions: List[OfflineTransaction]
    device_id: str = Field(min_length=1)
    force: bool = False
    # None defers to the user's settings
    strict: Optional[bool] = None


class ConflictDetail(BaseModel):
    """Why a client record diverges from server state."""

    type: str  # missing_account, missing_category, duplicate_transaction
    message: str
    fields: List[str] = Field(default_factory=list)
    server_data: Optional[Dict[str, Any]] = None
    client_data: Dict[str, Any] = Field(default_factory=dict)


class RecordOutcome(str, Enum):
    SYNCED = "synced"
    CONFLICT = "conflict"
    ERROR = "error"


class RecordResult(BaseModel):
    """Outcome of reconciling one client record: synced, conflict, or error."""

    client_id: str
    status: RecordOutcome
    server_id: Optional[int] = None
    conflict: Optional[ConflictDetail] = None
    error: Optional[str] = None

    @classmethod
    def synced(cls, client_id: str, server_id: Optional[int]) -> "RecordResult":
        return cls(client_id=client_id, status=RecordOutcome.SYNCED, server_id=server_id)

    @classmethod
    def conflicted(cls, client_id: str, detail: ConflictDetail) -> "RecordResult":
        return cls(client_id=client_id, status=RecordOutcome.CONFLICT, conflict=detail)

    @classmethod
    def failed(cls, client_id: str, message: str) -> "RecordResult":
        return cls(client_id=client_id, status=RecordOutcome.ERROR, error=message)


# ─── Full sync ────────────────────────────────────────────────────────────────

class FullSyncRequest(BaseModel):
    last_sync: Optional[dt.datetime] = None
    device_id: str = Field(min_length=1)
    include: List[EntityKind] = Field(default_factory=lambda: list(ALL_ENTITY_KINDS))


# ─── Conflict resolution ──────────────────────────────────────────────────────

class UseClient(BaseModel):
    action: Literal["use_client"]
    conflict_id: int


class UseServer(BaseModel):
    action: Literal["use_server"]
    conflict_id: int


class Merge(BaseModel):
    action: Literal["merge"]
    conflict_id: int
    data: TransactionPayload


Resolution = Annotated[Union[UseClient, UseServer, Merge], Field(discriminator="action")]


class ResolveConflictsRequest(BaseModel):
    resolutions: List[Resolution] = Field(min_length=1)


class ResolutionResult(BaseModel):
    conflict_id: int
    status: str  # resolved, not_found, error
    transaction_id: Optional[int] = None
    error: Optional[str] = None


# ─── Clear ────────────────────────────────────────────────────────────────────

class ClearSyncRequest(BaseModel):
    confirm: Literal[True]
    device_id: Optional[str] = None
