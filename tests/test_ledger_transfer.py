from __future__ import annotations

import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from dcabot.adapters.ledger import DryRunLedgerTransfer
from dcabot.adapters.ledger_relay import RelayLedgerTransfer
from dcabot.domain.errors import TransferError, TransferErrorCategory


def _relay(handler, **kwargs) -> RelayLedgerTransfer:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://relay.test"
    )
    return RelayLedgerTransfer(
        chain="injective", base_url="https://relay.test", client=client, **kwargs
    )


def _transfer(ledger, amount: str = "12.5", key: str | None = "dca-key-1"):
    async def scenario():
        try:
            return await ledger.transfer(
                Decimal(amount), "inj1source", "inj1dest", idempotency_key=key
            )
        finally:
            await ledger.aclose()
            client = getattr(ledger, "_client", None)
            if client is not None:
                await client.aclose()

    return asyncio.run(scenario())


def test_relay_transfer_posts_request_and_reads_tx_hash() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"txHash": "0xABC"})

    receipt = _transfer(_relay(handler, denom="usdt"))

    assert receipt.tx_ref == "0xABC"
    assert receipt.chain == "injective"
    assert receipt.amount == Decimal("12.5")
    assert receipt.simulated is False
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/v1/chains/injective/transfers"
    assert request.headers["Idempotency-Key"] == "dca-key-1"
    assert json.loads(request.content) == {
        "amount": "12.5",
        "denom": "usdt",
        "fromAddress": "inj1source",
        "toAddress": "inj1dest",
        "idempotencyKey": "dca-key-1",
    }


@pytest.mark.parametrize(
    ("status", "category"),
    [
        (400, TransferErrorCategory.REJECTED),
        (401, TransferErrorCategory.AUTH),
        (503, TransferErrorCategory.TRANSIENT),
    ],
)
def test_relay_http_errors_are_classified_without_retry(
    status: int, category: TransferErrorCategory
) -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(status, json={"error": "nope"})

    with pytest.raises(TransferError) as excinfo:
        _transfer(_relay(handler))

    assert excinfo.value.category is category
    assert excinfo.value.status_code == status
    assert excinfo.value.chain == "injective"
    assert calls["count"] == 1


def test_relay_retries_connection_failures_only() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        if calls["count"] < 3:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, json={"txHash": "0xDEF"})

    receipt = _transfer(_relay(handler, max_connect_attempts=3))

    assert receipt.tx_ref == "0xDEF"
    assert calls["count"] == 3


def test_relay_read_timeout_is_not_retried() -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        raise httpx.ReadTimeout("slow relay", request=request)

    with pytest.raises(TransferError) as excinfo:
        _transfer(_relay(handler))

    assert excinfo.value.category is TransferErrorCategory.TIMEOUT
    assert calls["count"] == 1


def test_relay_response_without_tx_hash_is_fatal() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"status": "queued"})

    with pytest.raises(TransferError, match="txHash") as excinfo:
        _transfer(_relay(handler))

    assert excinfo.value.category is TransferErrorCategory.FATAL


@pytest.mark.parametrize("amount", ["0", "-1"])
def test_non_positive_amounts_never_reach_the_relay(amount: str) -> None:
    calls = {"count": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["count"] += 1
        return httpx.Response(200, json={"txHash": "0x1"})

    with pytest.raises(TransferError) as excinfo:
        _transfer(_relay(handler), amount=amount)

    assert excinfo.value.category is TransferErrorCategory.REJECTED
    assert calls["count"] == 0


def test_dry_run_receipts_are_deterministic_per_idempotency_key() -> None:
    ledger = DryRunLedgerTransfer()

    async def scenario() -> tuple[str, str, str]:
        first = await ledger.transfer(Decimal("5"), "a", "b", idempotency_key="k-1")
        again = await ledger.transfer(Decimal("5"), "a", "b", idempotency_key="k-1")
        other = await ledger.transfer(Decimal("5"), "a", "b", idempotency_key="k-2")
        return first.tx_ref, again.tx_ref, other.tx_ref

    first, again, other = asyncio.run(scenario())

    assert first == again
    assert first != other
    assert first.startswith("dryrun-")
    assert all(receipt.simulated for receipt in ledger.receipts)
    assert len(ledger.receipts) == 3
