from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass

from dcabot.persistence.interfaces import (
    FiringsRepoProtocol,
    PlansRepoProtocol,
    UsersRepoProtocol,
)
from dcabot.persistence.sqlite.firings_repo import SqliteFiringsRepo
from dcabot.persistence.sqlite.plans_repo import SqlitePlansRepo
from dcabot.persistence.sqlite.sqlite_connection import create_sqlite_connection, ensure_min_schema
from dcabot.persistence.sqlite.users_repo import SqliteUsersRepo

logger = logging.getLogger(__name__)


class UnitOfWork:
    """One sqlite transaction spanning the users, plans and firings repos.

    Writers take the reserved lock up front (``BEGIN IMMEDIATE``) so concurrent
    processes serialize instead of failing on upgrade. Commits on clean exit.
    """

    def __init__(self, db_path: str, *, read_only: bool = False) -> None:
        self._db_path = db_path
        self.read_only = read_only
        self._conn: sqlite3.Connection | None = None
        self.users: UsersRepoProtocol
        self.plans: PlansRepoProtocol
        self.firings: FiringsRepoProtocol

    def _begin(self) -> sqlite3.Connection:
        conn = create_sqlite_connection(self._db_path)
        try:
            ensure_min_schema(conn)
            conn.execute("BEGIN" if self.read_only else "BEGIN IMMEDIATE")
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    def __enter__(self) -> UnitOfWork:
        conn = self._begin()
        self._conn = conn
        self.users = SqliteUsersRepo(conn, read_only=self.read_only)
        self.plans = SqlitePlansRepo(conn, read_only=self.read_only)
        self.firings = SqliteFiringsRepo(conn, read_only=self.read_only)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            if exc_type is not None:
                logger.debug(
                    "uow_rolled_back", extra={"extra": {"error_type": exc_type.__name__}}
                )
                conn.rollback()
            else:
                conn.commit()
        finally:
            conn.close()


@dataclass(frozen=True)
class UnitOfWorkFactory:
    db_path: str
    read_only: bool = False

    def __call__(self) -> UnitOfWork:
        return UnitOfWork(self.db_path, read_only=self.read_only)
