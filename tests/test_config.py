from __future__ import annotations

from decimal import Decimal
from pathlib import Path

import pytest
from pydantic import ValidationError

from dcabot.config import LedgerBackend, PriceFactorModelKind, Settings


def test_defaults_are_dry_run_with_band_model() -> None:
    settings = Settings()

    assert settings.ledger_backend is LedgerBackend.DRY_RUN
    assert settings.is_dry_run() is True
    assert settings.price_factor_model is PriceFactorModelKind.BANDS
    assert settings.trend_asset_id == "sonic-svm"
    assert settings.max_plan_amount is None


def test_choices_are_normalized() -> None:
    settings = Settings(
        LEDGER_BACKEND=" Injective ",
        LEDGER_RELAY_URL="https://relay.test",
        PRICE_FACTOR_MODEL="LLM",
        LLM_API_KEY="sk-test",
    )

    assert settings.ledger_backend is LedgerBackend.INJECTIVE
    assert settings.price_factor_model is PriceFactorModelKind.LLM
    assert settings.llm_api_key is not None
    assert settings.llm_api_key.get_secret_value() == "sk-test"


def test_live_ledger_requires_relay_url() -> None:
    with pytest.raises(ValidationError, match="LEDGER_RELAY_URL is required"):
        Settings(LEDGER_BACKEND="sonic")


def test_llm_model_requires_api_key() -> None:
    with pytest.raises(ValidationError, match="LLM_API_KEY is required"):
        Settings(PRICE_FACTOR_MODEL="llm")


@pytest.mark.parametrize(
    ("field", "value"),
    [
        ("TRANSFER_TIMEOUT_SECONDS", "0"),
        ("TREND_TIMEOUT_SECONDS", "-1"),
        ("FIRING_DRAIN_TIMEOUT_SECONDS", "-5"),
        ("TREND_HISTORY_DAYS", "1"),
        ("TREND_ASSET_ID", "   "),
        ("MAX_PLAN_AMOUNT", "0"),
        ("OBSERVABILITY_METRICS_EXPORTER", "statsd"),
        ("LEDGER_BACKEND", "solana"),
    ],
)
def test_invalid_values_are_rejected(field: str, value: str) -> None:
    with pytest.raises(ValidationError):
        Settings(**{field: value})


def test_loads_values_from_env_file(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    env_file = tmp_path / ".env.dca"
    env_file.write_text(
        "\n".join(
            [
                "LEDGER_BACKEND=injective",
                "LEDGER_RELAY_URL=https://relay.test",
                "LEDGER_DENOM=inj",
                "MAX_PLAN_AMOUNT=250",
                "TREND_ASSET_ID=injective-protocol",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    monkeypatch.chdir(tmp_path)

    settings = Settings(_env_file=str(env_file))

    assert settings.ledger_backend is LedgerBackend.INJECTIVE
    assert settings.ledger_relay_url == "https://relay.test"
    assert settings.ledger_denom == "inj"
    assert settings.max_plan_amount == Decimal("250")
    assert settings.trend_asset_id == "injective-protocol"


def test_environment_overrides_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TREND_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("OBSERVABILITY_METRICS_EXPORTER", "Prometheus")

    settings = Settings()

    assert settings.trend_timeout_seconds == 2.5
    assert settings.observability_metrics_exporter == "prometheus"
