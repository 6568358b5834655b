from __future__ import annotations

import asyncio
import os
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path

import pytest

from dcabot.adapters.ledger import LedgerTransfer
from dcabot.config import Settings
from dcabot.domain.models import TransferReceipt, TrendEstimate
from dcabot.observability import NoopInstrumentation, set_instrumentation


@pytest.fixture(autouse=True)
def isolate_settings_from_host_env(monkeypatch: pytest.MonkeyPatch):
    original_env_file = Settings.model_config.get("env_file")
    Settings.model_config["env_file"] = None

    settings_env_keys: set[str] = set()
    for field in Settings.model_fields.values():
        if isinstance(field.alias, str):
            settings_env_keys.add(field.alias)

    for key in list(os.environ):
        if key in settings_env_keys:
            monkeypatch.delenv(key, raising=False)

    yield

    Settings.model_config["env_file"] = original_env_file


@pytest.fixture(autouse=True)
def isolate_default_state_db_per_test(
    isolate_settings_from_host_env: None,
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    del isolate_settings_from_host_env
    monkeypatch.setenv("STATE_DB_PATH", str(tmp_path / "state.db"))
    monkeypatch.setenv("DCABOT_LOCK_DIR", str(tmp_path / "locks"))


@pytest.fixture(autouse=True)
def reset_instrumentation():
    set_instrumentation(NoopInstrumentation())
    yield
    set_instrumentation(NoopInstrumentation())


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "registry.db")


class StubTrendEstimator:
    def __init__(self, trend: TrendEstimate | None = None, error: Exception | None = None) -> None:
        self.trend = trend or TrendEstimate(price_factor=Decimal("1.0"), is_price_going_up=True)
        self.error = error
        self.calls: list[str] = []

    async def estimate_trend(self, asset_id: str) -> TrendEstimate:
        self.calls.append(asset_id)
        if self.error is not None:
            raise self.error
        return self.trend

    async def aclose(self) -> None:
        return None


class RecordingLedger(LedgerTransfer):
    def __init__(self) -> None:
        self.chain = "test"
        self.calls: list[tuple[Decimal, str, str, str | None]] = []
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None

    async def transfer(
        self,
        amount: Decimal,
        from_address: str,
        to_address: str,
        *,
        idempotency_key: str | None = None,
    ) -> TransferReceipt:
        self.calls.append((amount, from_address, to_address, idempotency_key))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return TransferReceipt(
            tx_ref=f"tx-{len(self.calls)}",
            chain=self.chain,
            amount=amount,
            from_address=from_address,
            to_address=to_address,
        )


class ManualTimer:
    """Clock plus sleep whose sleepers only wake when the test moves time."""

    def __init__(self, start: datetime) -> None:
        self.now = start
        self.waiters: list[tuple[datetime, asyncio.Future[None]]] = []

    def clock(self) -> datetime:
        return self.now

    async def sleep(self, seconds: float) -> None:
        future: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        entry = (self.now + timedelta(seconds=seconds), future)
        self.waiters.append(entry)
        try:
            await future
        finally:
            if entry in self.waiters:
                self.waiters.remove(entry)

    def release(self, moment: datetime) -> None:
        self.now = moment
        for due, future in list(self.waiters):
            if due <= moment and not future.done():
                future.set_result(None)

    async def advance_to(self, moment: datetime) -> None:
        self.release(moment)
        await pump()

    def pending_wakeups(self) -> list[datetime]:
        return sorted(due for due, future in self.waiters if not future.done())


async def pump(rounds: int = 20) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


async def wait_until(predicate, timeout: float = 5.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached before timeout")
        await asyncio.sleep(0.01)


async def park(_seconds: float) -> None:
    await asyncio.Event().wait()


@pytest.fixture
def stub_estimator() -> StubTrendEstimator:
    return StubTrendEstimator()


@pytest.fixture
def recording_ledger() -> RecordingLedger:
    return RecordingLedger()
