from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from decimal import Decimal

from dcabot.domain.models import FiringOutcome, FiringRecord

logger = logging.getLogger(__name__)


class SqliteFiringsRepo:
    def __init__(self, conn: sqlite3.Connection, *, read_only: bool = False) -> None:
        self._conn = conn
        self._read_only = read_only

    def _ensure_writable(self) -> None:
        if self._read_only:
            logger.warning("read_only_write_blocked", extra={"extra": {"repo": "firings"}})
            raise PermissionError("UnitOfWork is read-only; firing writes are blocked")

    def record_firing(self, outcome: FiringOutcome) -> None:
        self._ensure_writable()
        self._conn.execute(
            """
            INSERT INTO plan_firings(firing_id, plan_id, status, amount, tx_ref, error, fired_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(firing_id) DO UPDATE SET
                status=excluded.status,
                amount=excluded.amount,
                tx_ref=excluded.tx_ref,
                error=excluded.error
            """,
            (
                outcome.firing_id,
                outcome.plan_id,
                outcome.status.value,
                str(outcome.amount) if outcome.amount is not None else None,
                outcome.tx_ref,
                outcome.error,
                outcome.fired_at.isoformat(),
            ),
        )

    def list_for_plan(self, plan_id: str, *, limit: int = 50) -> list[FiringRecord]:
        rows = self._conn.execute(
            """
            SELECT firing_id, plan_id, status, amount, tx_ref, error, fired_at
            FROM plan_firings
            WHERE plan_id = ?
            ORDER BY fired_at DESC, firing_id DESC
            LIMIT ?
            """,
            (plan_id, max(1, int(limit))),
        ).fetchall()
        return [
            FiringRecord(
                firing_id=str(row["firing_id"]),
                plan_id=str(row["plan_id"]),
                status=str(row["status"]),
                fired_at=datetime.fromisoformat(str(row["fired_at"])),
                amount=Decimal(str(row["amount"])) if row["amount"] is not None else None,
                tx_ref=str(row["tx_ref"]) if row["tx_ref"] is not None else None,
                error=str(row["error"]) if row["error"] is not None else None,
            )
            for row in rows
        ]
