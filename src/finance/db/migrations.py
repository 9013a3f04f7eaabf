"""
Database migrations for the sync tables.

Uses SQLite ALTER TABLE ADD COLUMN for incremental schema evolution.
Each migration is idempotent: columns are only added if absent.

Called automatically from get_engine() after create_all() so both
fresh installs and databases created before a column existed are handled
without manual steps.
"""
from sqlalchemy import text

# (table, column, SQLite type) in the order they were introduced
MIGRATIONS = [
    # Device scoping for per-device clears and last-sync lookups
    ("syncsession", "device_id", "VARCHAR"),
    ("pendingofflinerecord", "device_id", "VARCHAR"),
    # Isolated batch mode keeps the last failure on a pending record
    ("pendingofflinerecord", "last_error", "VARCHAR"),
    # Conflict counters split out of the free-form sync_data blob
    ("syncsession", "conflicts", "INTEGER NOT NULL DEFAULT 0"),
    ("syncsession", "errors", "INTEGER NOT NULL DEFAULT 0"),
]


def run_migrations(engine) -> None:
    """Apply all pending schema migrations.

    Safe to call multiple times; checks column existence before altering.
    Supports SQLite only (uses PRAGMA table_info); other backends are
    expected to be created fresh by create_all().

    Args:
        engine: SQLAlchemy engine (SQLModel create_engine result).
    """
    if engine.dialect.name != "sqlite":
        return
    with engine.connect() as conn:
        for table, column, col_type in MIGRATIONS:
            _add_column_if_missing(conn, table, column, col_type)
        conn.commit()


def _add_column_if_missing(conn, table: str, column: str, col_type: str) -> None:
    """Add a column to a table if it doesn't already exist.

    Args:
        conn: SQLAlchemy connection.
        table: Table name (lowercase, as SQLite stores it).
        column: Column name to add.
        col_type: SQLite column definition, e.g. "INTEGER", "VARCHAR".
    """
    result = conn.execute(text(f"PRAGMA table_info({table})"))
    existing_columns = {row[1] for row in result}
    if existing_columns and column not in existing_columns:
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}"))
