from __future__ import annotations

import hashlib
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import StrEnum


class Frequency(StrEnum):
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"


class RiskLevel(StrEnum):
    NO_RISK = "no_risk"
    LOW_RISK = "low_risk"
    MEDIUM_RISK = "medium_risk"
    HIGH_RISK = "high_risk"


RISK_MULTIPLIERS: dict[RiskLevel, Decimal] = {
    RiskLevel.NO_RISK: Decimal("1.0"),
    RiskLevel.LOW_RISK: Decimal("1.2"),
    RiskLevel.MEDIUM_RISK: Decimal("1.5"),
    RiskLevel.HIGH_RISK: Decimal("2.0"),
}
DEFAULT_RISK_MULTIPLIER = Decimal("1.0")


class FiringStatus(StrEnum):
    SUCCEEDED = "succeeded"
    PLAN_MISSING = "plan_missing"
    PLAN_INACTIVE = "plan_inactive"
    USER_MISSING = "user_missing"
    TRANSFER_FAILED = "transfer_failed"
    PERSIST_FAILED = "persist_failed"
    INTERNAL_ERROR = "internal_error"


def parse_amount(value: object) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("amount must be numeric, not bool")
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    if isinstance(value, str):
        try:
            return Decimal(value.strip().replace(",", "."))
        except InvalidOperation as exc:
            raise ValueError(f"invalid amount: {value!r}") from exc
    raise TypeError(f"Cannot parse amount from {type(value)!r}")


def utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class User:
    user_id: str
    address: str
    created_at: datetime | None = None


@dataclass(frozen=True)
class Plan:
    plan_id: str
    user_id: str
    amount: Decimal
    initial_amount: Decimal
    frequency: Frequency
    to_address: str
    risk_level: RiskLevel = RiskLevel.NO_RISK
    is_active: bool = True
    execution_count: int = 0
    total_invested: Decimal = Decimal("0")
    last_execution_time: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def with_execution(self, amount: Decimal, executed_at: datetime) -> Plan:
        """Return the plan state after one successful transfer of ``amount``.

        The baseline for later risk adjustments is the originally requested
        amount, not the amount that was actually moved.
        """
        execution_count = self.execution_count + 1
        initial_amount = self.amount if execution_count == 1 else self.initial_amount
        return replace(
            self,
            execution_count=execution_count,
            total_invested=self.total_invested + amount,
            last_execution_time=executed_at,
            initial_amount=initial_amount,
            updated_at=executed_at,
        )

    def deactivated(self, at: datetime) -> Plan:
        return replace(self, is_active=False, updated_at=at)


@dataclass(frozen=True)
class TrendEstimate:
    price_factor: Decimal
    is_price_going_up: bool
    moving_average_7d: Decimal | None = None
    moving_average_30d: Decimal | None = None
    price_change_pct: Decimal | None = None


NEUTRAL_TREND = TrendEstimate(price_factor=Decimal("1.0"), is_price_going_up=False)


@dataclass(frozen=True)
class TransferReceipt:
    tx_ref: str
    chain: str
    amount: Decimal
    from_address: str
    to_address: str
    simulated: bool = False


@dataclass(frozen=True)
class AmountDecision:
    amount: Decimal
    risk_multiplier: Decimal
    updated_amount: Decimal | None = None
    delta: Decimal | None = None
    trend: TrendEstimate | None = None
    used_fallback: bool = False


@dataclass(frozen=True)
class FiringOutcome:
    firing_id: str
    plan_id: str
    status: FiringStatus
    fired_at: datetime
    amount: Decimal | None = None
    tx_ref: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status is FiringStatus.SUCCEEDED


@dataclass(frozen=True)
class FiringRecord:
    firing_id: str
    plan_id: str
    status: str
    fired_at: datetime
    amount: Decimal | None
    tx_ref: str | None
    error: str | None


def make_idempotency_key(plan_id: str, execution_count: int, to_address: str) -> str:
    raw = f"{plan_id}|{execution_count}|{to_address}"
    digest = hashlib.sha256(raw.encode()).hexdigest()[:24]
    return f"dca-{digest}"
