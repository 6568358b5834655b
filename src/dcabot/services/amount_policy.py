from __future__ import annotations

import asyncio
import logging
from decimal import Decimal

from dcabot.adapters.trend import TrendEstimator
from dcabot.domain.models import (
    DEFAULT_RISK_MULTIPLIER,
    NEUTRAL_TREND,
    RISK_MULTIPLIERS,
    AmountDecision,
    Plan,
    RiskLevel,
    TrendEstimate,
)
from dcabot.observability import get_instrumentation
from dcabot.services.trend_analysis import clamp_price_factor

logger = logging.getLogger(__name__)


def risk_multiplier(level: RiskLevel | str | None) -> Decimal:
    if level is None:
        return DEFAULT_RISK_MULTIPLIER
    try:
        resolved = RiskLevel(str(level).strip().lower())
    except ValueError:
        return DEFAULT_RISK_MULTIPLIER
    return RISK_MULTIPLIERS.get(resolved, DEFAULT_RISK_MULTIPLIER)


def risk_adjusted_amount(
    initial_amount: Decimal, multiplier: Decimal, trend: TrendEstimate
) -> tuple[Decimal, Decimal, Decimal]:
    """Return ``(updated_amount, delta, execution_amount)``.

    Rising trends buy less than the risk-scaled amount, falling trends buy more.
    """
    updated_amount = initial_amount * multiplier
    delta = (updated_amount - initial_amount) * trend.price_factor
    if trend.is_price_going_up:
        return updated_amount, delta, updated_amount - delta
    return updated_amount, delta, updated_amount + delta


def _usable_trend(trend: TrendEstimate) -> TrendEstimate | None:
    factor = trend.price_factor
    if not isinstance(factor, Decimal):
        try:
            factor = Decimal(str(factor))
        except ArithmeticError:
            return None
    if not factor.is_finite():
        return None
    clamped = clamp_price_factor(factor)
    # Float factors from third-party estimators are rebuilt so amount math stays Decimal.
    if isinstance(trend.price_factor, Decimal) and clamped == trend.price_factor:
        return trend
    return TrendEstimate(
        price_factor=clamped,
        is_price_going_up=bool(trend.is_price_going_up),
        moving_average_7d=trend.moving_average_7d,
        moving_average_30d=trend.moving_average_30d,
        price_change_pct=trend.price_change_pct,
    )


class AmountPolicy:
    def __init__(
        self,
        estimator: TrendEstimator,
        *,
        asset_id: str = "sonic-svm",
        timeout_seconds: float = 15.0,
    ) -> None:
        self._estimator = estimator
        self._asset_id = asset_id
        self._timeout_seconds = timeout_seconds

    async def _estimate(self) -> tuple[TrendEstimate, bool]:
        try:
            trend = await asyncio.wait_for(
                self._estimator.estimate_trend(self._asset_id), timeout=self._timeout_seconds
            )
            usable = _usable_trend(trend)
            if usable is None:
                raise ValueError(f"unusable price factor: {trend.price_factor!r}")
            return usable, False
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "trend_estimate_fallback",
                extra={
                    "extra": {
                        "asset_id": self._asset_id,
                        "error_type": type(exc).__name__,
                        "error_message": str(exc),
                    }
                },
            )
            get_instrumentation().counter("dca_trend_fallback_total", 1)
            return NEUTRAL_TREND, True

    async def decide(self, plan: Plan) -> AmountDecision:
        multiplier = risk_multiplier(plan.risk_level)
        if plan.execution_count == 0:
            return AmountDecision(amount=plan.amount, risk_multiplier=multiplier)

        trend, used_fallback = await self._estimate()
        updated_amount, delta, amount = risk_adjusted_amount(
            plan.initial_amount, multiplier, trend
        )
        return AmountDecision(
            amount=amount,
            risk_multiplier=multiplier,
            updated_amount=updated_amount,
            delta=delta,
            trend=trend,
            used_fallback=used_fallback,
        )

    async def compute_execution_amount(self, plan: Plan) -> Decimal:
        decision = await self.decide(plan)
        return decision.amount
