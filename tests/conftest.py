"""Shared test fixtures."""
from datetime import datetime
from decimal import Decimal
from typing import Generator

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from finance.db.engine import import_models
from finance.models.ledger import Account, Category, User
from finance.models.settings import SyncPreferences
from finance.sync.schemas import OfflineTransaction

# Import all models so SQLModel.metadata knows about them
import_models()


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="user")
def user_fixture(test_session: Session) -> User:
    user = User(name="Ana Reyes", email="ana@example.com", api_token="token-ana")
    test_session.add(user)
    test_session.commit()
    test_session.refresh(user)
    return user


@pytest.fixture(name="other_user")
def other_user_fixture(test_session: Session) -> User:
    user = User(name="Ben Cruz", email="ben@example.com", api_token="token-ben")
    test_session.add(user)
    test_session.commit()
    test_session.refresh(user)
    return user


@pytest.fixture(name="account")
def account_fixture(test_session: Session, user: User) -> Account:
    """A wallet with a 1000.00 opening balance."""
    account = Account(user_id=user.id, name="Wallet", balance=Decimal("1000.00"))
    test_session.add(account)
    test_session.commit()
    test_session.refresh(account)
    return account


@pytest.fixture(name="category")
def category_fixture(test_session: Session, user: User) -> Category:
    category = Category(user_id=user.id, name="Food")
    test_session.add(category)
    test_session.commit()
    test_session.refresh(category)
    return category


@pytest.fixture(name="preferences")
def preferences_fixture() -> SyncPreferences:
    return SyncPreferences(strict_batch=False, initial_transaction_window_months=3)


@pytest.fixture(name="make_item")
def make_item_fixture(account: Account, category: Category):
    """Factory for OfflineTransaction payloads against the seeded account/category."""

    def _make(client_id: str, **overrides) -> OfflineTransaction:
        data = {
            "account_id": account.id,
            "category_id": category.id,
            "amount": "100",
            "type": "expense",
            "date": "2024-01-15",
            "description": "Lunch",
        }
        created_at = overrides.pop("created_at", datetime(2024, 1, 15, 12, 0))
        data.update(overrides)
        return OfflineTransaction(client_id=client_id, data=data, created_at=created_at)

    return _make
