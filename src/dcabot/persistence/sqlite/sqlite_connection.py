from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager


def create_sqlite_connection(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, timeout=30.0)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA busy_timeout = 5000")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


@contextmanager
def sqlite_connection_context(db_path: str) -> Iterator[sqlite3.Connection]:
    conn = create_sqlite_connection(db_path)
    try:
        yield conn
    finally:
        conn.close()


def ensure_plan_schema(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS users (
            user_id TEXT PRIMARY KEY,
            address TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )
    conn.execute("CREATE UNIQUE INDEX IF NOT EXISTS idx_users_address_unique ON users(address)")
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS plans (
            plan_id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            amount TEXT NOT NULL,
            initial_amount TEXT NOT NULL,
            frequency TEXT NOT NULL,
            to_address TEXT NOT NULL,
            risk_level TEXT NOT NULL DEFAULT 'no_risk',
            is_active INTEGER NOT NULL DEFAULT 1,
            execution_count INTEGER NOT NULL DEFAULT 0,
            total_invested TEXT NOT NULL DEFAULT '0',
            last_execution_time TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_plans_user_id ON plans(user_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_plans_is_active ON plans(is_active)")
    plan_columns = {str(row["name"]) for row in conn.execute("PRAGMA table_info(plans)")}
    if "risk_level" not in plan_columns:
        conn.execute("ALTER TABLE plans ADD COLUMN risk_level TEXT NOT NULL DEFAULT 'no_risk'")


def ensure_min_schema(conn: sqlite3.Connection) -> None:
    ensure_plan_schema(conn)
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS plan_firings (
            firing_id TEXT PRIMARY KEY,
            plan_id TEXT NOT NULL,
            status TEXT NOT NULL,
            amount TEXT,
            tx_ref TEXT,
            error TEXT,
            fired_at TEXT NOT NULL
        )
        """
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_plan_firings_plan ON plan_firings(plan_id, fired_at)"
    )
