"""
Ledger entities the sync subsystem reads and writes.

Only the columns sync depends on are modelled here: identity, ownership,
foreign keys, balances, and the updated_at / deleted_at convention that the
full-sync planner uses for deltas. Everything else about these entities
belongs to the CRUD side of the application.
"""
import datetime as dt
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlmodel import Field, Relationship, SQLModel

from finance.models.common import OwnedRecord, utcnow


class TransactionType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


class User(SQLModel, table=True):
    """Account holder. api_token authenticates API requests."""

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(unique=True, index=True)
    api_token: str = Field(unique=True, index=True)
    created_at: dt.datetime = Field(default_factory=utcnow)


class Account(OwnedRecord, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    type: str = "cash"  # cash, bank, credit_card, investment, ewallet
    balance: Decimal = Field(default=Decimal("0"), max_digits=15, decimal_places=2)
    currency: str = "PHP"
    is_active: bool = True

    transactions: List["Transaction"] = Relationship(back_populates="account")


class Category(OwnedRecord, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    type: str = TransactionType.EXPENSE.value
    color: Optional[str] = None
    icon: Optional[str] = None


class Budget(OwnedRecord, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    category_id: Optional[int] = Field(default=None, foreign_key="category.id")
    name: str
    amount: Decimal = Field(max_digits=15, decimal_places=2)
    period: str = "monthly"  # monthly, weekly, yearly
    start_date: dt.date
    end_date: dt.date
    spent: Decimal = Field(default=Decimal("0"), max_digits=15, decimal_places=2)


class FinancialGoal(OwnedRecord, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    target_amount: Decimal = Field(max_digits=15, decimal_places=2)
    current_amount: Decimal = Field(default=Decimal("0"), max_digits=15, decimal_places=2)
    target_date: dt.date
    status: str = "active"  # active, completed, paused, cancelled


class Bill(OwnedRecord, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    category_id: Optional[int] = Field(default=None, foreign_key="category.id")
    name: str
    amount: Decimal = Field(max_digits=15, decimal_places=2)
    due_date: dt.date
    frequency: str = "monthly"
    status: str = "active"  # active, paid, overdue, cancelled


class Transaction(OwnedRecord, table=True):
    """A posted income or expense against one account."""

    __tablename__ = "transactions"  # "transaction" is reserved in SQL

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    category_id: int = Field(foreign_key="category.id", index=True)
    description: str = Field(max_length=255)
    amount: Decimal = Field(max_digits=15, decimal_places=2)
    type: str  # TransactionType value
    date: dt.date = Field(index=True)
    notes: Optional[str] = None
    reference_number: Optional[str] = None
    is_cleared: bool = True
    cleared_at: Optional[dt.datetime] = None

    # Provenance for rows created by offline sync
    synced_from_offline: bool = False
    client_created_at: Optional[dt.datetime] = None
    device_id: Optional[str] = None

    account: Optional[Account] = Relationship(back_populates="transactions")

    @property
    def signed_amount(self) -> Decimal:
        """Amount as it affects the account balance."""
        if self.type == TransactionType.INCOME.value:
            return Decimal(self.amount)
        return -Decimal(self.amount)


class AccountBalanceHistory(SQLModel, table=True):
    """One row per balance change, written alongside the change itself."""

    id: Optional[int] = Field(default=None, primary_key=True)
    account_id: int = Field(foreign_key="account.id", index=True)
    balance: Decimal = Field(max_digits=15, decimal_places=2)
    change_amount: Decimal = Field(max_digits=15, decimal_places=2)
    change_type: str = "transaction"
    date: dt.date = Field(default_factory=lambda: utcnow().date())
    created_at: dt.datetime = Field(default_factory=utcnow)
