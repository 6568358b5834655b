from __future__ import annotations

import httpx
import pytest

from dcabot.domain.errors import TransferError, TransferErrorCategory
from dcabot.services.transfer_errors import as_transfer_error, classify_transfer_error

_REQUEST = httpx.Request("POST", "https://relay.test/v1/chains/sonic/transfers")


def _status_error(status: int) -> httpx.HTTPStatusError:
    return httpx.HTTPStatusError(
        f"HTTP {status}", request=_REQUEST, response=httpx.Response(status, request=_REQUEST)
    )


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (httpx.ReadTimeout("slow", request=_REQUEST), TransferErrorCategory.TIMEOUT),
        (TimeoutError(), TransferErrorCategory.TIMEOUT),
        (httpx.ConnectError("refused", request=_REQUEST), TransferErrorCategory.TRANSIENT),
        (_status_error(429), TransferErrorCategory.TRANSIENT),
        (_status_error(401), TransferErrorCategory.AUTH),
        (_status_error(403), TransferErrorCategory.AUTH),
        (_status_error(422), TransferErrorCategory.REJECTED),
        (_status_error(502), TransferErrorCategory.TRANSIENT),
        (ValueError("bad"), TransferErrorCategory.FATAL),
        (
            TransferError("misconfigured", category=TransferErrorCategory.CONFIGURATION),
            TransferErrorCategory.CONFIGURATION,
        ),
    ],
)
def test_classify_transfer_error(exc: Exception, expected: TransferErrorCategory) -> None:
    assert classify_transfer_error(exc) is expected


def test_as_transfer_error_keeps_status_and_chain() -> None:
    error = as_transfer_error(_status_error(400), chain="sonic")

    assert error.category is TransferErrorCategory.REJECTED
    assert error.status_code == 400
    assert error.chain == "sonic"
    assert "HTTP 400" in str(error)


def test_as_transfer_error_passes_transfer_errors_through() -> None:
    original = TransferError("already classified", category=TransferErrorCategory.AUTH)

    assert as_transfer_error(original) is original
