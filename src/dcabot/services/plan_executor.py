from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal

from dcabot.adapters.ledger import LedgerTransfer
from dcabot.domain.errors import TransferError, TransferErrorCategory
from dcabot.domain.models import (
    FiringOutcome,
    FiringStatus,
    Plan,
    TransferReceipt,
    make_idempotency_key,
    utc_now,
)
from dcabot.logging_context import with_firing_context, with_logging_context
from dcabot.observability import get_instrumentation
from dcabot.services.amount_policy import AmountPolicy
from dcabot.services.plan_registry import PlanRegistry
from dcabot.services.transfer_errors import as_transfer_error
from dcabot.services.user_directory import UserDirectory

logger = logging.getLogger(__name__)


def new_firing_id() -> str:
    return uuid.uuid4().hex[:16]


class PlanExecutor:
    """Runs one firing of one plan.

    ``execute_plan`` reports every outcome as a ``FiringOutcome`` and only
    lets ``asyncio.CancelledError`` escape.
    """

    def __init__(
        self,
        *,
        registry: PlanRegistry,
        users: UserDirectory,
        policy: AmountPolicy,
        ledger: LedgerTransfer,
        transfer_timeout_seconds: float = 30.0,
        lookup_timeout_seconds: float = 10.0,
        clock: Callable[[], datetime] = utc_now,
        firing_id_factory: Callable[[], str] = new_firing_id,
    ) -> None:
        self._registry = registry
        self._users = users
        self._policy = policy
        self._ledger = ledger
        self._transfer_timeout_seconds = transfer_timeout_seconds
        self._lookup_timeout_seconds = lookup_timeout_seconds
        self._clock = clock
        self._firing_id_factory = firing_id_factory

    async def execute_plan(self, plan_id: str) -> FiringOutcome:
        firing_id = self._firing_id_factory()
        fired_at = self._clock()
        instrumentation = get_instrumentation()
        started = time.monotonic()
        with with_firing_context(plan_id=plan_id, firing_id=firing_id):
            with instrumentation.trace(
                "plan_firing", attrs={"plan_id": plan_id, "firing_id": firing_id}
            ):
                try:
                    outcome = await self._fire(plan_id, firing_id, fired_at)
                except asyncio.CancelledError:
                    logger.warning("plan_firing_cancelled")
                    raise
                except Exception as exc:  # noqa: BLE001
                    logger.exception("plan_firing_internal_error")
                    outcome = FiringOutcome(
                        firing_id=firing_id,
                        plan_id=plan_id,
                        status=FiringStatus.INTERNAL_ERROR,
                        fired_at=fired_at,
                        error=f"{type(exc).__name__}: {exc}",
                    )
        latency_ms = (time.monotonic() - started) * 1000
        instrumentation.counter("dca_firings_total", 1, attrs={"status": outcome.status.value})
        instrumentation.histogram("dca_firing_latency_ms", latency_ms)
        return outcome

    async def _fire(self, plan_id: str, firing_id: str, fired_at: datetime) -> FiringOutcome:
        plan = await self._registry.load(plan_id)
        if plan is None:
            logger.warning("plan_firing_skipped_missing_plan")
            return FiringOutcome(firing_id, plan_id, FiringStatus.PLAN_MISSING, fired_at)
        if not plan.is_active:
            logger.info("plan_firing_skipped_inactive_plan")
            return FiringOutcome(firing_id, plan_id, FiringStatus.PLAN_INACTIVE, fired_at)

        with with_logging_context(user_id=plan.user_id):
            return await self._fire_active(plan, firing_id, fired_at)

    async def _fire_active(self, plan: Plan, firing_id: str, fired_at: datetime) -> FiringOutcome:
        plan_id = plan.plan_id
        logger.info(
            "plan_firing_started",
            extra={
                "extra": {
                    "user_id": plan.user_id,
                    "execution_count": plan.execution_count,
                    "frequency": plan.frequency.value,
                }
            },
        )

        try:
            user = await asyncio.wait_for(
                self._users.get_user(plan.user_id), timeout=self._lookup_timeout_seconds
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "plan_user_lookup_failed",
                extra={"extra": {"user_id": plan.user_id, "error_type": type(exc).__name__}},
            )
            return await self._audit(
                FiringOutcome(
                    firing_id,
                    plan_id,
                    FiringStatus.USER_MISSING,
                    fired_at,
                    error=f"user lookup failed: {type(exc).__name__}",
                )
            )
        if user is None:
            logger.warning("plan_user_not_found", extra={"extra": {"user_id": plan.user_id}})
            return await self._audit(
                FiringOutcome(
                    firing_id,
                    plan_id,
                    FiringStatus.USER_MISSING,
                    fired_at,
                    error=f"user not found: {plan.user_id}",
                )
            )

        decision = await self._policy.decide(plan)
        logger.info(
            "plan_amount_computed",
            extra={
                "extra": {
                    "amount": str(decision.amount),
                    "risk_multiplier": str(decision.risk_multiplier),
                    "price_factor": str(decision.trend.price_factor) if decision.trend else None,
                    "is_price_going_up": (
                        decision.trend.is_price_going_up if decision.trend else None
                    ),
                    "used_fallback": decision.used_fallback,
                }
            },
        )

        try:
            receipt = await self._transfer(plan, decision.amount, user.address)
        except TransferError as exc:
            logger.warning(
                "plan_transfer_failed",
                extra={
                    "extra": {
                        "amount": str(decision.amount),
                        "category": exc.category.value,
                        "status_code": exc.status_code,
                        "error_message": str(exc),
                    }
                },
            )
            return await self._audit(
                FiringOutcome(
                    firing_id,
                    plan_id,
                    FiringStatus.TRANSFER_FAILED,
                    fired_at,
                    amount=decision.amount,
                    error=str(exc),
                )
            )

        updated = plan.with_execution(decision.amount, self._clock())
        outcome = FiringOutcome(
            firing_id,
            plan_id,
            FiringStatus.SUCCEEDED,
            fired_at,
            amount=decision.amount,
            tx_ref=receipt.tx_ref,
        )
        try:
            await self._registry.record_execution(
                updated, expected_execution_count=plan.execution_count, outcome=outcome
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            # Funds moved but the plan row does not show it; no automatic reconciliation.
            logger.critical(
                "plan_state_persist_failed_after_transfer",
                extra={
                    "extra": {
                        "tx_ref": receipt.tx_ref,
                        "amount": str(decision.amount),
                        "chain": receipt.chain,
                        "error_type": type(exc).__name__,
                        "error_message": str(exc),
                    }
                },
            )
            return await self._audit(
                FiringOutcome(
                    firing_id,
                    plan_id,
                    FiringStatus.PERSIST_FAILED,
                    fired_at,
                    amount=decision.amount,
                    tx_ref=receipt.tx_ref,
                    error=f"{type(exc).__name__}: {exc}",
                )
            )

        get_instrumentation().histogram("dca_transfer_amount", float(decision.amount))
        logger.info(
            "plan_firing_succeeded",
            extra={
                "extra": {
                    "tx_ref": receipt.tx_ref,
                    "amount": str(decision.amount),
                    "execution_count": updated.execution_count,
                    "total_invested": str(updated.total_invested),
                }
            },
        )
        return outcome

    async def _transfer(
        self, plan: Plan, amount: Decimal, from_address: str
    ) -> TransferReceipt:
        key = make_idempotency_key(plan.plan_id, plan.execution_count, plan.to_address)
        try:
            return await asyncio.wait_for(
                self._ledger.transfer(amount, from_address, plan.to_address, idempotency_key=key),
                timeout=self._transfer_timeout_seconds,
            )
        except asyncio.CancelledError:
            raise
        except TimeoutError as exc:
            raise TransferError(
                f"transfer timed out after {self._transfer_timeout_seconds}s",
                category=TransferErrorCategory.TIMEOUT,
                chain=getattr(self._ledger, "chain", None),
            ) from exc
        except TransferError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise as_transfer_error(exc, chain=getattr(self._ledger, "chain", None)) from exc

    async def _audit(self, outcome: FiringOutcome) -> FiringOutcome:
        try:
            await self._registry.record_firing(outcome)
        except asyncio.CancelledError:
            raise
        except Exception:  # noqa: BLE001
            logger.warning(
                "firing_audit_write_failed",
                extra={"extra": {"status": outcome.status.value}},
                exc_info=True,
            )
        return outcome
