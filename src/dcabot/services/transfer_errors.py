from __future__ import annotations

import httpx

from dcabot.domain.errors import TransferError, TransferErrorCategory


def classify_transfer_error(exc: Exception) -> TransferErrorCategory:
    if isinstance(exc, TransferError):
        return exc.category
    if isinstance(exc, httpx.TimeoutException | TimeoutError):
        return TransferErrorCategory.TIMEOUT
    if isinstance(exc, httpx.ConnectError | httpx.NetworkError):
        return TransferErrorCategory.TRANSIENT
    if isinstance(exc, httpx.HTTPStatusError) and exc.response is not None:
        status = int(exc.response.status_code)
    else:
        status = None

    if status == 429:
        return TransferErrorCategory.TRANSIENT
    if status in {401, 403}:
        return TransferErrorCategory.AUTH
    if status is not None and status >= 500:
        return TransferErrorCategory.TRANSIENT
    if status is not None and 400 <= status < 500:
        return TransferErrorCategory.REJECTED
    if isinstance(exc, httpx.TransportError):
        return TransferErrorCategory.TRANSIENT
    return TransferErrorCategory.FATAL


def as_transfer_error(exc: Exception, *, chain: str | None = None) -> TransferError:
    if isinstance(exc, TransferError):
        return exc
    status: int | None = None
    if isinstance(exc, httpx.HTTPStatusError) and exc.response is not None:
        status = int(exc.response.status_code)
    category = classify_transfer_error(exc)
    detail = f"HTTP {status}" if status is not None else type(exc).__name__
    return TransferError(
        f"transfer failed ({category.value}): {detail}",
        category=category,
        status_code=status,
        chain=chain,
    )
