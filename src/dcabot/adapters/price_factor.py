from __future__ import annotations

import json
import logging
from decimal import Decimal, InvalidOperation
from typing import Protocol

import httpx

from dcabot.adapters.retry import async_retry, http_read_retry_policy
from dcabot.domain.errors import TrendEstimateError
from dcabot.services.trend_analysis import TrendSignals, band_price_factor, clamp_price_factor

logger = logging.getLogger(__name__)

PRICE_FACTOR_SYSTEM_PROMPT = """You are a cryptocurrency price analyzer. Analyze the provided data and return a single number:

- If price is dropping (negative price change %), return a number between 0 and 1:
  * For minimal price drops (0 to -3%), return a number close to 1 (0.7-1.0)
  * For moderate price drops (-3% to -10%), return a mid-range number (0.4-0.7)
  * For significant price drops (< -10%), return a number close to 0 (0.1-0.3)

- If price is rising (positive price change %), return a number between 1 and 2:
  * For minimal price increases (0-3%), return a number close to 1 (1.0-1.3)
  * For moderate price increases (3-10%), return a mid-range number (1.3-1.7)
  * For significant price increases (>10%), return a number close to 2 (1.7-1.9)

Only return the number as a JSON object with a single field called "priceFactor". Nothing else."""


class PriceFactorModel(Protocol):
    async def price_factor(self, asset_id: str, signals: TrendSignals) -> Decimal: ...


class BandPriceFactorModel:
    async def price_factor(self, asset_id: str, signals: TrendSignals) -> Decimal:
        del asset_id
        return band_price_factor(signals.price_change_pct)


def parse_price_factor_content(content: str | None) -> Decimal:
    if not content:
        raise TrendEstimateError("price factor response was empty")
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as exc:
        raise TrendEstimateError("price factor response was not JSON") from exc
    if not isinstance(payload, dict) or "priceFactor" not in payload:
        raise TrendEstimateError("price factor response missing 'priceFactor'")
    raw = payload["priceFactor"]
    if isinstance(raw, bool):
        raise TrendEstimateError("priceFactor must be numeric")
    try:
        value = Decimal(str(raw))
    except InvalidOperation as exc:
        raise TrendEstimateError(f"priceFactor is not numeric: {raw!r}") from exc
    if not value.is_finite():
        raise TrendEstimateError("priceFactor must be finite")
    return clamp_price_factor(value)


class ChatCompletionPriceFactorModel:
    """Asks an OpenAI-compatible chat endpoint to grade the trend signals."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "gpt-3.5-turbo",
        timeout_seconds: float = 15.0,
        max_attempts: int = 2,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._max_attempts = max_attempts
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds, connect=min(5.0, timeout_seconds)),
        )

    def _request_body(self, asset_id: str, signals: TrendSignals) -> dict[str, object]:
        user_prompt = (
            "Please analyze this token data and provide a price factor:\n\n"
            f"Token: {asset_id}\n"
            f"7-Day Moving Average: ${signals.moving_average_7d:.4f}\n"
            f"30-Day Moving Average: ${signals.moving_average_30d:.4f}\n"
            f"24-Hour Price Change: {signals.price_change_pct:.2f}%\n"
        )
        return {
            "model": self._model,
            "messages": [
                {"role": "system", "content": PRICE_FACTOR_SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
            "response_format": {"type": "json_object"},
            "temperature": 0,
        }

    async def price_factor(self, asset_id: str, signals: TrendSignals) -> Decimal:
        body = self._request_body(asset_id, signals)

        async def _call() -> httpx.Response:
            response = await self._client.post(
                "/chat/completions",
                json=body,
                headers={"Authorization": f"Bearer {self._api_key}"},
            )
            response.raise_for_status()
            return response

        try:
            response = await async_retry(
                _call,
                max_attempts=self._max_attempts,
                classify=http_read_retry_policy(),
                operation="price_factor_completion",
            )
            payload = response.json()
            content = payload["choices"][0]["message"]["content"]
        except httpx.HTTPError as exc:
            raise TrendEstimateError(f"price factor request failed: {type(exc).__name__}") from exc
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise TrendEstimateError("malformed price factor response") from exc

        factor = parse_price_factor_content(content)
        logger.info(
            "price_factor_classified",
            extra={"extra": {"asset_id": asset_id, "price_factor": str(factor)}},
        )
        return factor

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
