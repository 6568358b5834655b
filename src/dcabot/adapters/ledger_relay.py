from __future__ import annotations

import logging
from decimal import Decimal

import httpx

from dcabot.adapters.ledger import LedgerTransfer, validate_transfer_request
from dcabot.adapters.retry import async_retry, connect_only_retry_policy
from dcabot.domain.errors import TransferError, TransferErrorCategory
from dcabot.domain.models import TransferReceipt
from dcabot.services.transfer_errors import as_transfer_error

logger = logging.getLogger(__name__)


class RelayLedgerTransfer(LedgerTransfer):
    """Submits transfers for one chain through an HTTP signing relay.

    The relay owns keys, transaction construction and broadcast; this client
    only sends ``POST /v1/chains/{chain}/transfers`` and reads back ``txHash``.
    """

    def __init__(
        self,
        *,
        chain: str,
        base_url: str,
        token: str | None = None,
        denom: str = "usdt",
        timeout_seconds: float = 30.0,
        max_connect_attempts: int = 3,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.chain = chain
        self.denom = denom
        self._max_connect_attempts = max_connect_attempts
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds, connect=min(5.0, timeout_seconds)),
        )

    async def transfer(
        self,
        amount: Decimal,
        from_address: str,
        to_address: str,
        *,
        idempotency_key: str | None = None,
    ) -> TransferReceipt:
        validate_transfer_request(amount, from_address, to_address)
        body = {
            "amount": str(amount),
            "denom": self.denom,
            "fromAddress": from_address,
            "toAddress": to_address,
        }
        headers: dict[str, str] = {}
        if idempotency_key:
            body["idempotencyKey"] = idempotency_key
            headers["Idempotency-Key"] = idempotency_key

        async def _submit() -> httpx.Response:
            response = await self._client.post(
                f"/v1/chains/{self.chain}/transfers", json=body, headers=headers
            )
            response.raise_for_status()
            return response

        try:
            response = await async_retry(
                _submit,
                max_attempts=self._max_connect_attempts,
                classify=connect_only_retry_policy(),
                operation=f"ledger_transfer_{self.chain}",
            )
        except httpx.HTTPError as exc:
            raise as_transfer_error(exc, chain=self.chain) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise TransferError(
                "relay returned a non-JSON response",
                category=TransferErrorCategory.FATAL,
                status_code=response.status_code,
                chain=self.chain,
            ) from exc
        tx_hash = payload.get("txHash") if isinstance(payload, dict) else None
        if not isinstance(tx_hash, str) or not tx_hash.strip():
            raise TransferError(
                "relay response missing txHash",
                category=TransferErrorCategory.FATAL,
                status_code=response.status_code,
                chain=self.chain,
            )

        logger.info(
            "ledger_transfer_submitted",
            extra={
                "extra": {
                    "chain": self.chain,
                    "amount": str(amount),
                    "denom": self.denom,
                    "to_address": to_address,
                    "tx_ref": tx_hash,
                }
            },
        )
        return TransferReceipt(
            tx_ref=tx_hash.strip(),
            chain=self.chain,
            amount=amount,
            from_address=from_address,
            to_address=to_address,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
