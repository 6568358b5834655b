from __future__ import annotations

import asyncio

from dcabot.adapters.coingecko import CoinGeckoTrendEstimator
from dcabot.adapters.ledger import DryRunLedgerTransfer
from dcabot.adapters.ledger_relay import RelayLedgerTransfer
from dcabot.adapters.price_factor import BandPriceFactorModel, ChatCompletionPriceFactorModel
from dcabot.config import Settings
from dcabot.services.ledger_factory import (
    build_ledger_transfer,
    build_price_factor_model,
    build_trend_estimator,
)


def test_dry_run_is_the_default_backend() -> None:
    ledger = build_ledger_transfer(Settings(LEDGER_DENOM="inj"))

    assert isinstance(ledger, DryRunLedgerTransfer)
    assert ledger.denom == "inj"


def test_live_backend_uses_chain_relay() -> None:
    settings = Settings(
        LEDGER_BACKEND="sonic",
        LEDGER_RELAY_URL="https://relay.test",
        LEDGER_RELAY_TOKEN="relay-token",
    )

    ledger = build_ledger_transfer(settings)
    try:
        assert isinstance(ledger, RelayLedgerTransfer)
        assert ledger.chain == "sonic"
    finally:
        asyncio.run(ledger.aclose())


def test_price_factor_model_selection() -> None:
    assert isinstance(build_price_factor_model(Settings()), BandPriceFactorModel)

    model = build_price_factor_model(Settings(PRICE_FACTOR_MODEL="llm", LLM_API_KEY="sk-x"))
    try:
        assert isinstance(model, ChatCompletionPriceFactorModel)
    finally:
        asyncio.run(model.aclose())


def test_trend_estimator_is_coingecko() -> None:
    estimator = build_trend_estimator(Settings())
    try:
        assert isinstance(estimator, CoinGeckoTrendEstimator)
    finally:
        asyncio.run(estimator.aclose())
