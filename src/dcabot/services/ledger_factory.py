from __future__ import annotations

import logging

from dcabot.adapters.coingecko import CoinGeckoTrendEstimator
from dcabot.adapters.ledger import DryRunLedgerTransfer, LedgerTransfer
from dcabot.adapters.ledger_relay import RelayLedgerTransfer
from dcabot.adapters.price_factor import (
    BandPriceFactorModel,
    ChatCompletionPriceFactorModel,
    PriceFactorModel,
)
from dcabot.config import LedgerBackend, PriceFactorModelKind, Settings

logger = logging.getLogger(__name__)


def build_ledger_transfer(settings: Settings) -> LedgerTransfer:
    backend = settings.ledger_backend
    if backend is LedgerBackend.DRY_RUN:
        logger.info("ledger_backend_selected", extra={"extra": {"backend": backend.value}})
        return DryRunLedgerTransfer(denom=settings.ledger_denom)

    if not settings.ledger_relay_url:
        raise ValueError(f"LEDGER_RELAY_URL is required when LEDGER_BACKEND={backend.value}")
    token = (
        settings.ledger_relay_token.get_secret_value() if settings.ledger_relay_token else None
    )
    logger.info(
        "ledger_backend_selected",
        extra={"extra": {"backend": backend.value, "relay_url": settings.ledger_relay_url}},
    )
    return RelayLedgerTransfer(
        chain=backend.value,
        base_url=settings.ledger_relay_url,
        token=token,
        denom=settings.ledger_denom,
        timeout_seconds=settings.transfer_timeout_seconds,
    )


def build_price_factor_model(settings: Settings) -> PriceFactorModel:
    if settings.price_factor_model is PriceFactorModelKind.LLM:
        if settings.llm_api_key is None:
            raise ValueError("LLM_API_KEY is required when PRICE_FACTOR_MODEL=llm")
        return ChatCompletionPriceFactorModel(
            api_key=settings.llm_api_key.get_secret_value(),
            base_url=settings.llm_base_url,
            model=settings.llm_model,
            timeout_seconds=settings.trend_timeout_seconds,
        )
    return BandPriceFactorModel()


def build_trend_estimator(settings: Settings) -> CoinGeckoTrendEstimator:
    api_key = (
        settings.coingecko_api_key.get_secret_value() if settings.coingecko_api_key else None
    )
    return CoinGeckoTrendEstimator(
        base_url=settings.coingecko_base_url,
        api_key=api_key,
        history_days=settings.trend_history_days,
        timeout_seconds=settings.trend_timeout_seconds,
        price_factor_model=build_price_factor_model(settings),
    )
