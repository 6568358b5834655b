from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from decimal import Decimal

from dcabot.domain.errors import PersistenceConflictError
from dcabot.domain.models import Frequency, Plan, RiskLevel

logger = logging.getLogger(__name__)

_PLAN_COLUMNS = (
    "plan_id, user_id, amount, initial_amount, frequency, to_address, risk_level, "
    "is_active, execution_count, total_invested, last_execution_time, created_at, updated_at"
)


def _parse_ts(value: object) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(str(value))


def _row_to_plan(row: sqlite3.Row) -> Plan:
    return Plan(
        plan_id=str(row["plan_id"]),
        user_id=str(row["user_id"]),
        amount=Decimal(str(row["amount"])),
        initial_amount=Decimal(str(row["initial_amount"])),
        frequency=Frequency(str(row["frequency"])),
        to_address=str(row["to_address"]),
        risk_level=RiskLevel(str(row["risk_level"])),
        is_active=bool(row["is_active"]),
        execution_count=int(row["execution_count"]),
        total_invested=Decimal(str(row["total_invested"])),
        last_execution_time=_parse_ts(row["last_execution_time"]),
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
    )


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class SqlitePlansRepo:
    def __init__(self, conn: sqlite3.Connection, *, read_only: bool = False) -> None:
        self._conn = conn
        self._read_only = read_only

    def _ensure_writable(self) -> None:
        if self._read_only:
            logger.warning("read_only_write_blocked", extra={"extra": {"repo": "plans"}})
            raise PermissionError("UnitOfWork is read-only; plan writes are blocked")

    def get(self, plan_id: str) -> Plan | None:
        row = self._conn.execute(
            f"SELECT {_PLAN_COLUMNS} FROM plans WHERE plan_id = ?", (plan_id,)
        ).fetchone()
        return _row_to_plan(row) if row is not None else None

    def save(self, plan: Plan) -> None:
        self._ensure_writable()
        self._conn.execute(
            f"""
            INSERT INTO plans({_PLAN_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(plan_id) DO UPDATE SET
                user_id=excluded.user_id,
                amount=excluded.amount,
                initial_amount=excluded.initial_amount,
                frequency=excluded.frequency,
                to_address=excluded.to_address,
                risk_level=excluded.risk_level,
                is_active=excluded.is_active,
                execution_count=excluded.execution_count,
                total_invested=excluded.total_invested,
                last_execution_time=excluded.last_execution_time,
                updated_at=excluded.updated_at
            """,
            (
                plan.plan_id,
                plan.user_id,
                str(plan.amount),
                str(plan.initial_amount),
                plan.frequency.value,
                plan.to_address,
                plan.risk_level.value,
                1 if plan.is_active else 0,
                plan.execution_count,
                str(plan.total_invested),
                _iso(plan.last_execution_time),
                _iso(plan.created_at),
                _iso(plan.updated_at),
            ),
        )

    def set_active(self, plan_id: str, *, is_active: bool, updated_at: datetime) -> bool:
        self._ensure_writable()
        cursor = self._conn.execute(
            "UPDATE plans SET is_active = ?, updated_at = ? WHERE plan_id = ?",
            (1 if is_active else 0, updated_at.isoformat(), plan_id),
        )
        return cursor.rowcount > 0

    def record_execution(self, plan: Plan, *, expected_execution_count: int) -> None:
        """Persist only the execution-state columns of ``plan``.

        The write is guarded by the execution count observed before the
        transfer, so it never clobbers ``is_active`` or a concurrent firing.
        """
        self._ensure_writable()
        cursor = self._conn.execute(
            """
            UPDATE plans SET
                execution_count = ?,
                total_invested = ?,
                last_execution_time = ?,
                initial_amount = ?,
                updated_at = ?
            WHERE plan_id = ? AND execution_count = ?
            """,
            (
                plan.execution_count,
                str(plan.total_invested),
                _iso(plan.last_execution_time),
                str(plan.initial_amount),
                _iso(plan.updated_at),
                plan.plan_id,
                expected_execution_count,
            ),
        )
        if cursor.rowcount != 1:
            raise PersistenceConflictError(
                f"plan {plan.plan_id} changed before execution state could be recorded "
                f"(expected execution_count={expected_execution_count})"
            )

    def list_active(self) -> list[Plan]:
        rows = self._conn.execute(
            f"SELECT {_PLAN_COLUMNS} FROM plans WHERE is_active = 1 ORDER BY created_at, plan_id"
        ).fetchall()
        return [_row_to_plan(row) for row in rows]

    def list_by_user(self, user_id: str) -> list[Plan]:
        rows = self._conn.execute(
            f"SELECT {_PLAN_COLUMNS} FROM plans WHERE user_id = ? ORDER BY created_at, plan_id",
            (user_id,),
        ).fetchall()
        return [_row_to_plan(row) for row in rows]

    def sum_invested_by_user(self, user_id: str) -> Decimal:
        rows = self._conn.execute(
            "SELECT total_invested FROM plans WHERE user_id = ?", (user_id,)
        ).fetchall()
        # Summed in Decimal; SQL SUM over TEXT would go through REAL.
        return sum((Decimal(str(row["total_invested"])) for row in rows), Decimal("0"))
