from __future__ import annotations

import asyncio
import logging
import sqlite3
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import TypeVar

from dcabot.domain.errors import RegistryUnavailableError
from dcabot.domain.models import FiringOutcome, FiringRecord, Plan, User
from dcabot.persistence.uow import UnitOfWork, UnitOfWorkFactory

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PlanRegistry:
    """Durable plan store plus an in-memory index of the active plans.

    The index is what the scheduler arms from. It follows every mutation made
    through this registry and is rebuilt from storage by ``refresh_active`` so
    plans changed by other processes are picked up. Storage calls are blocking
    sqlite work and run in worker threads.
    """

    def __init__(self, uow_factory: UnitOfWorkFactory | Callable[[], UnitOfWork]) -> None:
        self._uow_factory = uow_factory
        self._active: dict[str, Plan] = {}

    def active_plans(self) -> list[Plan]:
        return [self._active[plan_id] for plan_id in sorted(self._active)]

    def _remember(self, plan: Plan | None) -> Plan | None:
        if plan is None:
            return None
        if plan.is_active:
            self._active[plan.plan_id] = plan
        else:
            self._active.pop(plan.plan_id, None)
        return plan

    async def _run(self, fn: Callable[[UnitOfWork], T]) -> T:
        def _work() -> T:
            with self._uow_factory() as uow:
                return fn(uow)

        return await asyncio.to_thread(_work)

    async def bootstrap(self) -> list[Plan]:
        try:
            plans = await self._run(lambda uow: uow.plans.list_active())
        except (sqlite3.Error, OSError) as exc:
            raise RegistryUnavailableError(f"plan storage unavailable: {exc}") from exc
        self._active = {plan.plan_id: plan for plan in plans if plan.is_active}
        logger.info("plan_registry_bootstrapped", extra={"extra": {"active_plans": len(plans)}})
        return plans

    async def load(self, plan_id: str) -> Plan | None:
        plan = await self._run(lambda uow: uow.plans.get(plan_id))
        if plan is None:
            self._active.pop(plan_id, None)
            return None
        return self._remember(plan)

    async def save(self, plan: Plan) -> Plan:
        await self._run(lambda uow: uow.plans.save(plan))
        self._remember(plan)
        return plan

    async def set_active(self, plan_id: str, *, is_active: bool, at: datetime) -> Plan | None:
        def _work(uow: UnitOfWork) -> Plan | None:
            if not uow.plans.set_active(plan_id, is_active=is_active, updated_at=at):
                return None
            return uow.plans.get(plan_id)

        return self._remember(await self._run(_work))

    async def record_execution(
        self, plan: Plan, *, expected_execution_count: int, outcome: FiringOutcome
    ) -> Plan:
        """Persist execution state and its audit row in one transaction."""

        def _work(uow: UnitOfWork) -> Plan | None:
            uow.plans.record_execution(plan, expected_execution_count=expected_execution_count)
            uow.firings.record_firing(outcome)
            return uow.plans.get(plan.plan_id)

        stored = await self._run(_work)
        return self._remember(stored) or plan

    async def record_firing(self, outcome: FiringOutcome) -> None:
        await self._run(lambda uow: uow.firings.record_firing(outcome))

    async def list_firings(self, plan_id: str, *, limit: int = 50) -> list[FiringRecord]:
        return await self._run(lambda uow: uow.firings.list_for_plan(plan_id, limit=limit))

    async def refresh_active(self) -> list[Plan]:
        """Replace the index with the active plans currently in storage."""
        plans = await self._run(lambda uow: uow.plans.list_active())
        self._active = {plan.plan_id: plan for plan in plans}
        return self.active_plans()

    async def list_by_user(self, user_id: str) -> list[Plan]:
        return await self._run(lambda uow: uow.plans.list_by_user(user_id))

    async def sum_invested_by_user(self, user_id: str) -> Decimal:
        return await self._run(lambda uow: uow.plans.sum_invested_by_user(user_id))

    async def get_user(self, user_id: str) -> User | None:
        return await self._run(lambda uow: uow.users.get(user_id))

    async def get_user_by_address(self, address: str) -> User | None:
        return await self._run(lambda uow: uow.users.get_by_address(address))

    async def get_or_create_user(self, user: User) -> tuple[User, bool]:
        def _work(uow: UnitOfWork) -> tuple[User, bool]:
            existing = uow.users.get_by_address(user.address)
            if existing is not None:
                return existing, False
            uow.users.insert(user)
            return user, True

        return await self._run(_work)
