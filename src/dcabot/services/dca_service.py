from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal

from dcabot.adapters.ledger import LedgerTransfer
from dcabot.adapters.trend import TrendEstimator
from dcabot.config import Settings
from dcabot.domain.cadence import parse_frequency
from dcabot.domain.errors import PlanNotFoundError, PlanValidationError, UserNotFoundError
from dcabot.domain.models import (
    FiringOutcome,
    FiringRecord,
    Frequency,
    Plan,
    RiskLevel,
    User,
    parse_amount,
    utc_now,
)
from dcabot.persistence.uow import UnitOfWorkFactory
from dcabot.runtime.guards import normalize_db_path
from dcabot.services.amount_policy import AmountPolicy
from dcabot.services.ledger_factory import build_ledger_transfer, build_trend_estimator
from dcabot.services.plan_executor import PlanExecutor
from dcabot.services.plan_registry import PlanRegistry
from dcabot.services.scheduler import PlanScheduler, SleepFn
from dcabot.services.user_directory import UserDirectory

logger = logging.getLogger(__name__)


def _parse_risk_level(value: RiskLevel | str | None) -> RiskLevel:
    if value is None:
        return RiskLevel.NO_RISK
    if isinstance(value, RiskLevel):
        return value
    try:
        return RiskLevel(str(value).strip().lower())
    except ValueError as exc:
        raise PlanValidationError(f"Invalid risk level: {value!r}") from exc


class DCAService:
    """Administrative surface over the plan registry and scheduler."""

    def __init__(
        self,
        *,
        registry: PlanRegistry,
        scheduler: PlanScheduler,
        users: UserDirectory,
        clock: Callable[[], datetime] = utc_now,
        max_plan_amount: Decimal | None = None,
        closeables: tuple[object, ...] = (),
    ) -> None:
        self.registry = registry
        self.scheduler = scheduler
        self.users = users
        self._clock = clock
        self._max_plan_amount = max_plan_amount
        self._closeables = closeables

    async def start(self) -> int:
        return await self.scheduler.start()

    async def shutdown(self) -> None:
        await self.scheduler.shutdown()
        for resource in self._closeables:
            await _aclose_best_effort(resource)

    async def register_user(self, address: str) -> User:
        return await self.users.register(address)

    async def get_user(self, user_id: str) -> User:
        user = await self.users.get_user(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    async def get_user_by_address(self, address: str) -> User | None:
        return await self.users.get_user_by_address(address)

    def _validate_amount(self, amount: object) -> Decimal:
        try:
            parsed = parse_amount(amount)
        except (TypeError, ValueError) as exc:
            raise PlanValidationError(str(exc)) from exc
        if not parsed.is_finite() or parsed <= 0:
            raise PlanValidationError("amount must be a positive number")
        if self._max_plan_amount is not None and parsed > self._max_plan_amount:
            raise PlanValidationError(
                f"amount {parsed} exceeds the configured maximum {self._max_plan_amount}"
            )
        return parsed

    async def create_plan(
        self,
        user_id: str,
        amount: object,
        frequency: Frequency | str,
        to_address: str,
        risk_level: RiskLevel | str | None = None,
    ) -> Plan:
        cleaned_user_id = (user_id or "").strip()
        if not cleaned_user_id:
            raise PlanValidationError("user_id is required")
        parsed_amount = self._validate_amount(amount)
        try:
            parsed_frequency = parse_frequency(frequency)
        except ValueError as exc:
            raise PlanValidationError(str(exc)) from exc
        destination = (to_address or "").strip()
        if not destination:
            raise PlanValidationError("to_address is required")
        parsed_risk = _parse_risk_level(risk_level)
        if await self.users.get_user(cleaned_user_id) is None:
            raise PlanValidationError(f"unknown user: {cleaned_user_id}")

        now = self._clock()
        plan = Plan(
            plan_id=uuid.uuid4().hex,
            user_id=cleaned_user_id,
            amount=parsed_amount,
            initial_amount=parsed_amount,
            frequency=parsed_frequency,
            to_address=destination,
            risk_level=parsed_risk,
            created_at=now,
            updated_at=now,
        )
        await self.registry.save(plan)
        self.scheduler.arm(plan)
        logger.info(
            "plan_created",
            extra={
                "extra": {
                    "plan_id": plan.plan_id,
                    "user_id": plan.user_id,
                    "amount": str(plan.amount),
                    "frequency": plan.frequency.value,
                    "risk_level": plan.risk_level.value,
                }
            },
        )
        return plan

    async def get_plan(self, plan_id: str) -> Plan:
        plan = await self.registry.load(plan_id)
        if plan is None:
            raise PlanNotFoundError(plan_id)
        return plan

    async def stop_plan(self, plan_id: str) -> Plan:
        plan = await self.get_plan(plan_id)
        # The timer goes first so no tick can start once this returns.
        self.scheduler.cancel(plan_id)
        if not plan.is_active:
            return plan
        try:
            stopped = await self.registry.set_active(plan_id, is_active=False, at=self._clock())
        except Exception:
            # A closing scheduler refuses new timers; the storage error is the one to surface.
            if not self.scheduler.closing:
                self.scheduler.arm(plan)
            raise
        if stopped is None:
            raise PlanNotFoundError(plan_id)
        logger.info("plan_stopped", extra={"extra": {"plan_id": plan_id}})
        return stopped

    async def list_user_plans(self, user_id: str) -> list[Plan]:
        return await self.registry.list_by_user(user_id)

    async def total_investment(self, user_id: str) -> Decimal:
        return await self.registry.sum_invested_by_user(user_id)

    async def fire_plan_now(self, plan_id: str) -> FiringOutcome | None:
        await self.get_plan(plan_id)
        return await self.scheduler.fire_now(plan_id)

    async def list_plan_firings(self, plan_id: str, limit: int = 50) -> list[FiringRecord]:
        await self.get_plan(plan_id)
        return await self.registry.list_firings(plan_id, limit=limit)


async def _aclose_best_effort(resource: object) -> None:
    close = getattr(resource, "aclose", None)
    if not callable(close):
        return
    try:
        await close()
    except Exception:  # noqa: BLE001
        logger.warning(
            "resource_close_failed",
            extra={"extra": {"resource": type(resource).__name__}},
            exc_info=True,
        )


def build_dca_service(
    settings: Settings,
    *,
    ledger: LedgerTransfer | None = None,
    estimator: TrendEstimator | None = None,
    clock: Callable[[], datetime] = utc_now,
    sleep: SleepFn = asyncio.sleep,
) -> DCAService:
    db_path = normalize_db_path(settings.state_db_path)
    registry = PlanRegistry(UnitOfWorkFactory(str(db_path)))
    users = UserDirectory(registry, clock=clock)
    ledger = ledger or build_ledger_transfer(settings)
    estimator = estimator or build_trend_estimator(settings)
    policy = AmountPolicy(
        estimator,
        asset_id=settings.trend_asset_id,
        timeout_seconds=settings.trend_timeout_seconds,
    )
    executor = PlanExecutor(
        registry=registry,
        users=users,
        policy=policy,
        ledger=ledger,
        transfer_timeout_seconds=settings.transfer_timeout_seconds,
        clock=clock,
    )
    scheduler = PlanScheduler(
        registry=registry,
        executor=executor,
        clock=clock,
        sleep=sleep,
        drain_timeout_seconds=settings.firing_drain_timeout_seconds,
    )
    return DCAService(
        registry=registry,
        scheduler=scheduler,
        users=users,
        clock=clock,
        max_plan_amount=settings.max_plan_amount,
        closeables=(ledger, estimator),
    )
