from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from dcabot.domain.errors import TrendEstimateError

ONE_DAY_MS = 24 * 60 * 60 * 1000
SHORT_WINDOW = 7
LONG_WINDOW = 30

_FACTOR_QUANT = Decimal("0.0001")

# (lower %, upper %, factor at lower, factor at upper); the last band saturates.
_FALLING_BANDS: tuple[tuple[Decimal, Decimal, Decimal, Decimal], ...] = (
    (Decimal("0"), Decimal("3"), Decimal("1.0"), Decimal("0.7")),
    (Decimal("3"), Decimal("10"), Decimal("0.7"), Decimal("0.4")),
    (Decimal("10"), Decimal("50"), Decimal("0.3"), Decimal("0.1")),
)
_RISING_BANDS: tuple[tuple[Decimal, Decimal, Decimal, Decimal], ...] = (
    (Decimal("0"), Decimal("3"), Decimal("1.0"), Decimal("1.3")),
    (Decimal("3"), Decimal("10"), Decimal("1.3"), Decimal("1.7")),
    (Decimal("10"), Decimal("50"), Decimal("1.7"), Decimal("1.9")),
)


@dataclass(frozen=True)
class PricePoint:
    timestamp_ms: int
    price: Decimal


@dataclass(frozen=True)
class TrendSignals:
    moving_average_7d: Decimal
    moving_average_30d: Decimal
    price_change_pct: Decimal

    @property
    def is_price_going_up(self) -> bool:
        return self.price_change_pct > 0


def moving_average(points: Sequence[PricePoint], period: int) -> Decimal:
    if period < 1:
        raise ValueError("period must be >= 1")
    if len(points) < period:
        raise TrendEstimateError(
            f"not enough price data for a {period}-sample moving average ({len(points)} samples)"
        )
    window = points[-period:]
    return sum((point.price for point in window), Decimal("0")) / Decimal(period)


def price_change_24h(points: Sequence[PricePoint]) -> Decimal:
    """Percent change between the latest sample and the one closest to 24h before it."""
    if len(points) < 2:
        raise TrendEstimateError("not enough price data to compute a 24h change")
    ordered = sorted(points, key=lambda point: point.timestamp_ms)
    latest = ordered[-1]
    target = latest.timestamp_ms - ONE_DAY_MS
    reference = min(ordered, key=lambda point: abs(point.timestamp_ms - target))
    if reference.price <= 0:
        raise TrendEstimateError("reference price must be positive")
    return (latest.price - reference.price) / reference.price * Decimal("100")


def summarize(points: Sequence[PricePoint]) -> TrendSignals:
    long_period = min(LONG_WINDOW, len(points))
    return TrendSignals(
        moving_average_7d=moving_average(points, SHORT_WINDOW),
        moving_average_30d=moving_average(points, long_period),
        price_change_pct=price_change_24h(points),
    )


def _interpolate(
    magnitude: Decimal, bands: tuple[tuple[Decimal, Decimal, Decimal, Decimal], ...]
) -> Decimal:
    for lower, upper, at_lower, at_upper in bands:
        if magnitude <= upper:
            span = upper - lower
            position = (magnitude - lower) / span if span else Decimal("0")
            return at_lower + (at_upper - at_lower) * position
    return bands[-1][3]


def band_price_factor(price_change_pct: Decimal) -> Decimal:
    """Map a 24h change to a factor in (0, 2): below 1 when falling, above 1 when rising."""
    if price_change_pct == 0:
        return Decimal("1.0")
    if price_change_pct < 0:
        factor = _interpolate(-price_change_pct, _FALLING_BANDS)
    else:
        factor = _interpolate(price_change_pct, _RISING_BANDS)
    return factor.quantize(_FACTOR_QUANT)


def clamp_price_factor(value: Decimal) -> Decimal:
    return min(Decimal("2"), max(Decimal("0"), value))
