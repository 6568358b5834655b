from __future__ import annotations

import logging
import sqlite3
from datetime import datetime

from dcabot.domain.models import User

logger = logging.getLogger(__name__)


def _row_to_user(row: sqlite3.Row) -> User:
    created_at = row["created_at"]
    return User(
        user_id=str(row["user_id"]),
        address=str(row["address"]),
        created_at=datetime.fromisoformat(str(created_at)) if created_at is not None else None,
    )


class SqliteUsersRepo:
    def __init__(self, conn: sqlite3.Connection, *, read_only: bool = False) -> None:
        self._conn = conn
        self._read_only = read_only

    def _ensure_writable(self) -> None:
        if self._read_only:
            logger.warning("read_only_write_blocked", extra={"extra": {"repo": "users"}})
            raise PermissionError("UnitOfWork is read-only; user writes are blocked")

    def get(self, user_id: str) -> User | None:
        row = self._conn.execute(
            "SELECT user_id, address, created_at FROM users WHERE user_id = ?", (user_id,)
        ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_address(self, address: str) -> User | None:
        row = self._conn.execute(
            "SELECT user_id, address, created_at FROM users WHERE address = ?", (address,)
        ).fetchone()
        return _row_to_user(row) if row is not None else None

    def insert(self, user: User) -> None:
        self._ensure_writable()
        self._conn.execute(
            "INSERT INTO users(user_id, address, created_at) VALUES (?, ?, ?)",
            (
                user.user_id,
                user.address,
                user.created_at.isoformat() if user.created_at is not None else None,
            ),
        )
