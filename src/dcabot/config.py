from __future__ import annotations

from decimal import Decimal
from enum import StrEnum

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LedgerBackend(StrEnum):
    DRY_RUN = "dry_run"
    INJECTIVE = "injective"
    SONIC = "sonic"


class PriceFactorModelKind(StrEnum):
    BANDS = "bands"
    LLM = "llm"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    state_db_path: str = Field(default="dcabot_state.db", alias="STATE_DB_PATH")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    ledger_backend: LedgerBackend = Field(default=LedgerBackend.DRY_RUN, alias="LEDGER_BACKEND")
    ledger_relay_url: str | None = Field(default=None, alias="LEDGER_RELAY_URL")
    ledger_relay_token: SecretStr | None = Field(default=None, alias="LEDGER_RELAY_TOKEN")
    ledger_denom: str = Field(default="usdt", alias="LEDGER_DENOM")
    transfer_timeout_seconds: float = Field(default=30.0, alias="TRANSFER_TIMEOUT_SECONDS")

    trend_asset_id: str = Field(default="sonic-svm", alias="TREND_ASSET_ID")
    trend_timeout_seconds: float = Field(default=15.0, alias="TREND_TIMEOUT_SECONDS")
    trend_history_days: int = Field(default=31, alias="TREND_HISTORY_DAYS")
    coingecko_base_url: str = Field(
        default="https://api.coingecko.com/api/v3", alias="COINGECKO_BASE_URL"
    )
    coingecko_api_key: SecretStr | None = Field(default=None, alias="COINGECKO_API_KEY")

    price_factor_model: PriceFactorModelKind = Field(
        default=PriceFactorModelKind.BANDS, alias="PRICE_FACTOR_MODEL"
    )
    llm_base_url: str = Field(default="https://api.openai.com/v1", alias="LLM_BASE_URL")
    llm_api_key: SecretStr | None = Field(default=None, alias="LLM_API_KEY")
    llm_model: str = Field(default="gpt-3.5-turbo", alias="LLM_MODEL")

    firing_drain_timeout_seconds: float = Field(default=60.0, alias="FIRING_DRAIN_TIMEOUT_SECONDS")
    max_plan_amount: Decimal | None = Field(default=None, alias="MAX_PLAN_AMOUNT")

    observability_enabled: bool = Field(default=False, alias="OBSERVABILITY_ENABLED")
    observability_metrics_exporter: str = Field(
        default="none", alias="OBSERVABILITY_METRICS_EXPORTER"
    )
    observability_otlp_endpoint: str | None = Field(
        default=None, alias="OBSERVABILITY_OTLP_ENDPOINT"
    )
    observability_prometheus_port: int = Field(default=9464, alias="OBSERVABILITY_PROMETHEUS_PORT")

    @field_validator("ledger_backend", "price_factor_model", mode="before")
    def normalize_choice(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("transfer_timeout_seconds", "trend_timeout_seconds")
    def validate_timeouts(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("collaborator timeouts must be > 0")
        return value

    @field_validator("firing_drain_timeout_seconds")
    def validate_drain_timeout(cls, value: float) -> float:
        if value < 0:
            raise ValueError("FIRING_DRAIN_TIMEOUT_SECONDS must be >= 0")
        return value

    @field_validator("trend_history_days")
    def validate_trend_history_days(cls, value: int) -> int:
        if value < 2:
            raise ValueError("TREND_HISTORY_DAYS must be >= 2")
        return value

    @field_validator("trend_asset_id", "ledger_denom")
    def validate_non_empty(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("value must not be empty")
        return cleaned

    @field_validator("max_plan_amount")
    def validate_max_plan_amount(cls, value: Decimal | None) -> Decimal | None:
        if value is not None and value <= 0:
            raise ValueError("MAX_PLAN_AMOUNT must be > 0")
        return value

    @field_validator("observability_metrics_exporter")
    def validate_metrics_exporter(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"none", "otlp", "prometheus"}:
            raise ValueError("OBSERVABILITY_METRICS_EXPORTER must be one of none|otlp|prometheus")
        return normalized

    @model_validator(mode="after")
    def validate_live_ledger(self) -> Settings:
        if self.ledger_backend is not LedgerBackend.DRY_RUN and not self.ledger_relay_url:
            raise ValueError(
                f"LEDGER_RELAY_URL is required when LEDGER_BACKEND={self.ledger_backend.value}"
            )
        if self.price_factor_model is PriceFactorModelKind.LLM and self.llm_api_key is None:
            raise ValueError("LLM_API_KEY is required when PRICE_FACTOR_MODEL=llm")
        return self

    def is_dry_run(self) -> bool:
        return self.ledger_backend is LedgerBackend.DRY_RUN
