from __future__ import annotations

import hashlib
import logging
from abc import ABC, abstractmethod
from decimal import Decimal

from dcabot.domain.errors import TransferError, TransferErrorCategory
from dcabot.domain.models import TransferReceipt

logger = logging.getLogger(__name__)


class LedgerTransfer(ABC):
    chain: str

    @abstractmethod
    async def transfer(
        self,
        amount: Decimal,
        from_address: str,
        to_address: str,
        *,
        idempotency_key: str | None = None,
    ) -> TransferReceipt:
        """Move ``amount`` and return the receipt, or raise ``TransferError``."""
        raise NotImplementedError

    async def aclose(self) -> None:
        return None


def validate_transfer_request(amount: Decimal, from_address: str, to_address: str) -> None:
    if not amount.is_finite() or amount <= 0:
        raise TransferError(
            f"transfer amount must be positive, got {amount}",
            category=TransferErrorCategory.REJECTED,
        )
    if not from_address.strip() or not to_address.strip():
        raise TransferError(
            "transfer requires both source and destination addresses",
            category=TransferErrorCategory.REJECTED,
        )


class DryRunLedgerTransfer(LedgerTransfer):
    """Simulated backend; never touches the network."""

    def __init__(self, *, chain: str = "dry_run", denom: str = "usdt") -> None:
        self.chain = chain
        self.denom = denom
        self.receipts: list[TransferReceipt] = []

    async def transfer(
        self,
        amount: Decimal,
        from_address: str,
        to_address: str,
        *,
        idempotency_key: str | None = None,
    ) -> TransferReceipt:
        validate_transfer_request(amount, from_address, to_address)
        seed = idempotency_key or f"{len(self.receipts)}|{amount}|{from_address}|{to_address}"
        tx_ref = "dryrun-" + hashlib.sha256(seed.encode()).hexdigest()[:32]
        receipt = TransferReceipt(
            tx_ref=tx_ref,
            chain=self.chain,
            amount=amount,
            from_address=from_address,
            to_address=to_address,
            simulated=True,
        )
        self.receipts.append(receipt)
        logger.info(
            "dry_run_transfer",
            extra={
                "extra": {
                    "amount": str(amount),
                    "denom": self.denom,
                    "to_address": to_address,
                    "tx_ref": tx_ref,
                }
            },
        )
        return receipt
