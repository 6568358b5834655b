from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

# Credentials the ledger relay and trend collaborators need at runtime.
RUNTIME_SECRET_KEYS = ("LEDGER_RELAY_TOKEN", "LLM_API_KEY", "COINGECKO_API_KEY")


class SecretProvider(Protocol):
    def get(self, key: str) -> str | None: ...


def read_dotenv(path: Path) -> dict[str, str]:
    """Parse ``KEY=VALUE`` lines, ignoring comments and ``export`` prefixes."""
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        return {}
    values: dict[str, str] = {}
    for line in text.splitlines():
        entry = line.strip()
        if not entry or entry.startswith("#") or "=" not in entry:
            continue
        key, _, raw = entry.removeprefix("export ").partition("=")
        values[key.strip()] = raw.strip().strip("\"'")
    return values


@dataclass(frozen=True)
class EnvSecretProvider:
    def get(self, key: str) -> str | None:
        return (os.environ.get(key) or "").strip() or None


@dataclass(frozen=True)
class DotenvSecretProvider:
    env_file: str

    def get(self, key: str) -> str | None:
        return read_dotenv(Path(self.env_file)).get(key) or None


@dataclass(frozen=True)
class ChainedSecretProvider:
    providers: tuple[SecretProvider, ...]

    def get(self, key: str) -> str | None:
        for provider in self.providers:
            value = provider.get(key)
            if value:
                return value
        return None


def build_default_provider(*, env_file: str | None = None) -> ChainedSecretProvider:
    if not env_file:
        return ChainedSecretProvider((EnvSecretProvider(),))
    return ChainedSecretProvider((EnvSecretProvider(), DotenvSecretProvider(env_file=env_file)))


def inject_runtime_secrets(
    provider: SecretProvider, *, keys: tuple[str, ...] = RUNTIME_SECRET_KEYS
) -> list[str]:
    """Copy secrets missing from the process env into it so ``Settings`` sees them."""
    missing = [key for key in keys if not os.getenv(key)]
    injected: list[str] = []
    for key in missing:
        value = provider.get(key)
        if value:
            os.environ[key] = value
            injected.append(key)
    if injected:
        logger.info("runtime_secrets_injected", extra={"extra": {"keys": injected}})
    return injected
