"""Tests for database migration helpers."""
from datetime import datetime

import pytest
from sqlalchemy import text
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, select

from finance.db.migrations import MIGRATIONS, run_migrations
from finance.models.ledger import User
from finance.models.sync import PendingOfflineRecord, SyncSession


@pytest.fixture(name="migration_engine")
def migration_engine_fixture():
    """In-memory SQLite engine with full schema, for testing migrations."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="legacy_engine")
def legacy_engine_fixture():
    """A database created before device scoping and the counter columns existed."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    with engine.connect() as conn:
        conn.execute(text(
            "CREATE TABLE syncsession ("
            "id INTEGER PRIMARY KEY, user_id INTEGER NOT NULL, sync_type VARCHAR, "
            "status VARCHAR, started_at DATETIME, completed_at DATETIME, "
            "items_synced INTEGER, sync_data JSON, error_message VARCHAR)"
        ))
        conn.execute(text(
            "INSERT INTO syncsession (user_id, sync_type, status, started_at, items_synced) "
            "VALUES (1, 'full', 'completed', '2024-01-01 00:00:00', 5)"
        ))
        conn.commit()
    yield engine
    engine.dispose()


def _columns(engine, table):
    with engine.connect() as conn:
        return {row[1] for row in conn.execute(text(f"PRAGMA table_info({table})"))}


class TestRunMigrations:
    def test_run_migrations_does_not_raise(self, migration_engine):
        """Migration should complete without errors on a fresh DB."""
        run_migrations(migration_engine)

    def test_run_migrations_is_idempotent(self, migration_engine):
        """Running migrations twice must not raise (columns already exist)."""
        run_migrations(migration_engine)
        run_migrations(migration_engine)  # second call must be safe

    def test_adds_missing_columns_to_legacy_table(self, legacy_engine):
        run_migrations(legacy_engine)
        columns = _columns(legacy_engine, "syncsession")
        assert {"device_id", "conflicts", "errors"} <= columns

    def test_existing_rows_get_counter_defaults(self, legacy_engine):
        run_migrations(legacy_engine)
        with legacy_engine.connect() as conn:
            row = conn.execute(
                text("SELECT device_id, conflicts, errors FROM syncsession")
            ).one()
        assert row == (None, 0, 0)

    def test_missing_tables_are_skipped(self, legacy_engine):
        """pendingofflinerecord does not exist yet; create_all will build it whole."""
        run_migrations(legacy_engine)
        assert _columns(legacy_engine, "pendingofflinerecord") == set()

    def test_every_migration_column_is_on_the_model(self, migration_engine):
        for table, column, _ in MIGRATIONS:
            assert column in _columns(migration_engine, table)

    def test_new_columns_are_usable_after_migration(self, migration_engine):
        run_migrations(migration_engine)
        with Session(migration_engine) as s:
            user = User(name="Ana", email="ana@example.com", api_token="t")
            s.add(user)
            s.commit()
            s.refresh(user)

            s.add(SyncSession(user_id=user.id, device_id="dev1", conflicts=2, errors=1))
            s.add(
                PendingOfflineRecord(
                    user_id=user.id,
                    device_id="dev1",
                    client_id="c1",
                    created_at_client=datetime(2024, 1, 1),
                    last_error="boom",
                )
            )
            s.commit()

            sync_session = s.exec(select(SyncSession)).first()
            record = s.exec(select(PendingOfflineRecord)).first()
            assert sync_session.conflicts == 2
            assert sync_session.errors == 1
            assert record.last_error == "boom"
            assert record.device_id == "dev1"
