from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from dcabot.domain.cadence import cadence_unit, next_boundary
from dcabot.domain.models import FiringOutcome, FiringStatus, Frequency, Plan, utc_now
from dcabot.observability import get_instrumentation
from dcabot.services.plan_executor import PlanExecutor
from dcabot.services.plan_registry import PlanRegistry

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]

_STALE_STATUSES = frozenset({FiringStatus.PLAN_MISSING, FiringStatus.PLAN_INACTIVE})


class PlanScheduler:
    """One timer task per active plan, firing on cadence boundaries (UTC).

    Each firing runs in its own task. A tick that lands while the previous
    firing of the same plan is still running is dropped, not queued.
    """

    def __init__(
        self,
        *,
        registry: PlanRegistry,
        executor: PlanExecutor,
        clock: Callable[[], datetime] = utc_now,
        sleep: SleepFn = asyncio.sleep,
        drain_timeout_seconds: float = 60.0,
    ) -> None:
        self._registry = registry
        self._executor = executor
        self._clock = clock
        self._sleep = sleep
        self._drain_timeout_seconds = drain_timeout_seconds
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._inflight: dict[str, asyncio.Task[FiringOutcome]] = {}
        self._closing = False

    async def start(self) -> int:
        """Re-arm every active plan from durable storage.

        Raises ``RegistryUnavailableError`` when storage cannot be read.
        """
        self._closing = False
        await self._registry.bootstrap()
        plans = self._registry.active_plans()
        for plan in plans:
            self.arm(plan)
        logger.info("scheduler_started", extra={"extra": {"armed_timers": len(self._timers)}})
        return len(plans)

    async def sync_with_registry(self) -> tuple[int, int]:
        """Arm plans activated elsewhere and drop timers of plans stopped elsewhere."""
        await self._registry.refresh_active()
        active = {plan.plan_id: plan for plan in self._registry.active_plans()}
        armed = 0
        for plan_id, plan in active.items():
            if plan_id not in self._timers:
                self.arm(plan)
                armed += 1
        cancelled = 0
        for plan_id in [plan_id for plan_id in self._timers if plan_id not in active]:
            self.cancel(plan_id)
            cancelled += 1
        if armed or cancelled:
            logger.info(
                "scheduler_resynced",
                extra={"extra": {"armed": armed, "cancelled": cancelled}},
            )
        return armed, cancelled

    def arm(self, plan: Plan) -> None:
        if self._closing:
            raise RuntimeError("scheduler is shutting down")
        self.cancel(plan.plan_id)
        if not plan.is_active:
            return
        task = asyncio.create_task(
            self._timer_loop(plan.plan_id, plan.frequency), name=f"dca-timer-{plan.plan_id}"
        )
        self._timers[plan.plan_id] = task
        get_instrumentation().gauge("dca_active_timers", 1)
        logger.info(
            "plan_timer_armed",
            extra={"extra": {"plan_id": plan.plan_id, "frequency": plan.frequency.value}},
        )

    def cancel(self, plan_id: str) -> bool:
        task = self._timers.pop(plan_id, None)
        if task is None:
            return False
        task.cancel()
        get_instrumentation().gauge("dca_active_timers", -1)
        logger.info("plan_timer_cancelled", extra={"extra": {"plan_id": plan_id}})
        return True

    @property
    def closing(self) -> bool:
        return self._closing

    def armed_plan_ids(self) -> list[str]:
        return sorted(self._timers)

    def is_firing(self, plan_id: str) -> bool:
        task = self._inflight.get(plan_id)
        return task is not None and not task.done()

    async def fire_now(self, plan_id: str) -> FiringOutcome | None:
        task = self._dispatch(plan_id)
        if task is None:
            return None
        return await asyncio.shield(task)

    async def shutdown(self) -> None:
        self._closing = True
        timers = list(self._timers.items())
        for plan_id, _ in timers:
            self.cancel(plan_id)
        if timers:
            await asyncio.gather(*(task for _, task in timers), return_exceptions=True)

        inflight = [task for task in self._inflight.values() if not task.done()]
        if inflight:
            logger.info("scheduler_draining", extra={"extra": {"in_flight": len(inflight)}})
            _, pending = await asyncio.wait(inflight, timeout=self._drain_timeout_seconds)
            if pending:
                logger.warning(
                    "scheduler_drain_timeout", extra={"extra": {"cancelled": len(pending)}}
                )
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
        logger.info("scheduler_stopped")

    async def _timer_loop(self, plan_id: str, frequency: Frequency) -> None:
        current = asyncio.current_task()
        last_due: datetime | None = None
        while True:
            now = self._clock()
            due = next_boundary(frequency, now)
            if last_due is not None and due <= last_due:
                # woke just before the boundary already fired
                due = last_due + cadence_unit(frequency)
            await self._sleep(max(0.0, (due - now).total_seconds()))
            if self._timers.get(plan_id) is not current:
                return
            last_due = due
            self._dispatch(plan_id, due=due)

    def _dispatch(
        self, plan_id: str, *, due: datetime | None = None
    ) -> asyncio.Task[FiringOutcome] | None:
        running = self._inflight.get(plan_id)
        if running is not None and not running.done():
            logger.warning(
                "plan_firing_coalesced",
                extra={
                    "extra": {
                        "plan_id": plan_id,
                        "due": due.isoformat() if due is not None else None,
                    }
                },
            )
            get_instrumentation().counter("dca_firings_coalesced_total", 1)
            return None
        task = asyncio.create_task(self._run_firing(plan_id), name=f"dca-firing-{plan_id}")
        self._inflight[plan_id] = task
        task.add_done_callback(lambda done: self._firing_done(plan_id, done))
        return task

    async def _run_firing(self, plan_id: str) -> FiringOutcome:
        outcome = await self._executor.execute_plan(plan_id)
        if outcome.status in _STALE_STATUSES and plan_id in self._timers:
            # storage says the plan should not be scheduled any more
            self.cancel(plan_id)
        return outcome

    def _firing_done(self, plan_id: str, task: asyncio.Task[FiringOutcome]) -> None:
        if self._inflight.get(plan_id) is task:
            del self._inflight[plan_id]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "plan_firing_task_failed",
                extra={"extra": {"plan_id": plan_id}},
                exc_info=(type(exc), exc, exc.__traceback__),
            )
