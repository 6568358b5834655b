from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation

import httpx

from dcabot.adapters.price_factor import BandPriceFactorModel, PriceFactorModel
from dcabot.adapters.retry import async_retry, http_read_retry_policy
from dcabot.domain.errors import TrendEstimateError
from dcabot.domain.models import TrendEstimate
from dcabot.services.trend_analysis import PricePoint, summarize

logger = logging.getLogger(__name__)


def parse_market_chart(payload: object) -> list[PricePoint]:
    """Turn a ``market_chart`` body into price points, skipping malformed rows."""
    if not isinstance(payload, dict):
        raise TrendEstimateError("market_chart payload must be an object")
    rows = payload.get("prices")
    if not isinstance(rows, list):
        raise TrendEstimateError("market_chart payload missing 'prices'")

    points: list[PricePoint] = []
    for row in rows:
        if not isinstance(row, list | tuple) or len(row) < 2:
            continue
        try:
            timestamp_ms = int(row[0])
            price = Decimal(str(row[1]))
        except (TypeError, ValueError, InvalidOperation):
            continue
        if not price.is_finite() or price <= 0:
            continue
        points.append(PricePoint(timestamp_ms=timestamp_ms, price=price))
    points.sort(key=lambda point: point.timestamp_ms)
    return points


class CoinGeckoTrendEstimator:
    def __init__(
        self,
        *,
        base_url: str = "https://api.coingecko.com/api/v3",
        api_key: str | None = None,
        history_days: int = 31,
        timeout_seconds: float = 15.0,
        max_attempts: int = 3,
        price_factor_model: PriceFactorModel | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._history_days = history_days
        self._max_attempts = max_attempts
        self._model = price_factor_model or BandPriceFactorModel()
        headers = {"Accept": "application/json"}
        if api_key:
            headers["x-cg-pro-api-key"] = api_key
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds, connect=min(5.0, timeout_seconds)),
        )

    async def fetch_history(self, asset_id: str) -> list[PricePoint]:
        async def _call() -> httpx.Response:
            response = await self._client.get(
                f"/coins/{asset_id}/market_chart",
                params={"vs_currency": "usd", "days": self._history_days},
            )
            response.raise_for_status()
            return response

        try:
            response = await async_retry(
                _call,
                max_attempts=self._max_attempts,
                classify=http_read_retry_policy(),
                operation="coingecko_market_chart",
            )
            payload = response.json()
        except httpx.HTTPError as exc:
            raise TrendEstimateError(
                f"failed to fetch price history for {asset_id}: {type(exc).__name__}"
            ) from exc
        except ValueError as exc:
            raise TrendEstimateError("price history response was not JSON") from exc
        return parse_market_chart(payload)

    async def estimate_trend(self, asset_id: str) -> TrendEstimate:
        points = await self.fetch_history(asset_id)
        signals = summarize(points)
        factor = await self._model.price_factor(asset_id, signals)
        estimate = TrendEstimate(
            price_factor=factor,
            is_price_going_up=signals.is_price_going_up,
            moving_average_7d=signals.moving_average_7d,
            moving_average_30d=signals.moving_average_30d,
            price_change_pct=signals.price_change_pct,
        )
        logger.info(
            "trend_estimated",
            extra={
                "extra": {
                    "asset_id": asset_id,
                    "samples": len(points),
                    "price_factor": str(estimate.price_factor),
                    "is_price_going_up": estimate.is_price_going_up,
                    "price_change_pct": f"{signals.price_change_pct:.4f}",
                }
            },
        )
        return estimate

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
        close_model = getattr(self._model, "aclose", None)
        if callable(close_model):
            await close_model()
