from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay_seconds: float = 0.0


NO_RETRY = RetryDecision(retry=False)


def parse_retry_after_seconds(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    candidate = value.strip()
    try:
        seconds = float(candidate)
        return seconds if seconds >= 0 else None
    except ValueError:
        pass

    try:
        parsed = parsedate_to_datetime(candidate)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return max(0.0, (parsed - datetime.now(UTC)).total_seconds())


def backoff_delay(
    *,
    attempt: int,
    base_delay_seconds: float,
    max_delay_seconds: float,
    retry_after_header: str | None = None,
    jitter_seed: int = 0,
) -> float:
    retry_after_seconds = parse_retry_after_seconds(retry_after_header)
    if retry_after_seconds is not None:
        return min(max_delay_seconds, retry_after_seconds)

    bounded_attempt = max(1, attempt)
    exp_delay = min(max_delay_seconds, base_delay_seconds * (2 ** (bounded_attempt - 1)))
    rng = random.Random(jitter_seed + bounded_attempt)
    return exp_delay * (0.8 + (0.4 * rng.random()))


def http_read_retry_policy(
    *, base_delay_seconds: float = 0.5, max_delay_seconds: float = 4.0
) -> Callable[[Exception, int], RetryDecision]:
    """Retry policy for idempotent GET/POST lookups (price history, classification)."""

    def classify(exc: Exception, attempt: int) -> RetryDecision:
        retry_after: str | None = None
        if isinstance(exc, httpx.HTTPStatusError):
            if exc.response.status_code not in RETRYABLE_STATUS_CODES:
                return NO_RETRY
            retry_after = exc.response.headers.get("Retry-After")
        elif not isinstance(exc, httpx.TransportError):
            return NO_RETRY
        return RetryDecision(
            retry=True,
            delay_seconds=backoff_delay(
                attempt=attempt,
                base_delay_seconds=base_delay_seconds,
                max_delay_seconds=max_delay_seconds,
                retry_after_header=retry_after,
            ),
        )

    return classify


def connect_only_retry_policy(
    *, base_delay_seconds: float = 0.25, max_delay_seconds: float = 1.0
) -> Callable[[Exception, int], RetryDecision]:
    """Retry only when the request provably never reached the peer."""

    def classify(exc: Exception, attempt: int) -> RetryDecision:
        if not isinstance(exc, httpx.ConnectError):
            return NO_RETRY
        return RetryDecision(
            retry=True,
            delay_seconds=backoff_delay(
                attempt=attempt,
                base_delay_seconds=base_delay_seconds,
                max_delay_seconds=max_delay_seconds,
            ),
        )

    return classify


async def async_retry(  # noqa: UP047
    fn: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    classify: Callable[[Exception, int], RetryDecision],
    operation: str = "request",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    for attempt in range(1, max_attempts + 1):
        try:
            return await fn()
        except Exception as exc:
            decision = classify(exc, attempt)
            if not decision.retry or attempt >= max_attempts:
                raise
            logger.info(
                "retrying_after_error",
                extra={
                    "extra": {
                        "operation": operation,
                        "attempt": attempt,
                        "delay_seconds": round(decision.delay_seconds, 3),
                        "error_type": type(exc).__name__,
                    }
                },
            )
            await sleep(max(0.0, decision.delay_seconds))

    raise RuntimeError("Retry loop exhausted unexpectedly")
