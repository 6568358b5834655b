from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

REDACTED = "***REDACTED***"

# Key fragments, compared after lowercasing and mapping "-" to "_".
SENSITIVE_KEYS = frozenset(
    {
        "api_key",
        "apikey",
        "authorization",
        "mnemonic",
        "password",
        "private_key",
        "privatekey",
        "secret",
        "seed_phrase",
        "token",
    }
)

_HEADER_PATTERN = re.compile(
    r"(?im)\b(authorization|x-cg-pro-api-key)(\s*[:=]\s*)(bearer\s+)?([^\s,;]+)"
)
_ENV_ASSIGNMENT_PATTERN = re.compile(
    r"(?im)\b(ledger_relay_token|llm_api_key|coingecko_api_key|mnemonic|private_key)"
    r"(\s*[:=]\s*)([^\s,;&]+)"
)
_QUERY_PARAM_PATTERN = re.compile(r"(?i)([?&])(x_cg_pro_api_key|api_key|apikey|token)=([^&\s]+)")
_JSON_FIELD_PATTERN = re.compile(
    r'(?i)("(?:api_?key|token|secret|password|authorization|mnemonic|private_?key)"\s*:\s*")'
    r'([^"\\]*)(")'
)


def is_sensitive_key(key: object) -> bool:
    normalized = str(key).replace("-", "_").casefold()
    compact = normalized.replace("_", "")
    return any(marker in normalized or marker in compact for marker in SENSITIVE_KEYS)


def mask_secret(value: str) -> str:
    """Keep at most the first and last four characters of a secret."""
    if not value:
        return REDACTED
    if len(value) <= 8:
        return "*" * len(value)
    return f"{value[:4]}...{value[-4:]}"


def sanitize_text(text: str, known_secrets: Iterable[str] = ()) -> str:
    redacted = str(text)
    for secret in known_secrets:
        if secret:
            redacted = redacted.replace(secret, mask_secret(secret))
    redacted = _HEADER_PATTERN.sub(
        lambda m: f"{m.group(1)}{m.group(2)}{m.group(3) or ''}[REDACTED]", redacted
    )
    redacted = _ENV_ASSIGNMENT_PATTERN.sub(
        lambda m: f"{m.group(1)}{m.group(2)}[REDACTED]", redacted
    )
    redacted = _QUERY_PARAM_PATTERN.sub(
        lambda m: f"{m.group(1)}{m.group(2)}={mask_secret(m.group(3))}", redacted
    )
    return _JSON_FIELD_PATTERN.sub(
        lambda m: f"{m.group(1)}{mask_secret(m.group(2))}{m.group(3)}", redacted
    )


def _redact_field(key: object, value: Any) -> Any:
    if is_sensitive_key(key):
        return REDACTED if value is None else mask_secret(str(value))
    return redact_data(value)


def redact_data(value: Any) -> Any:
    """Mask secrets inside a log payload, walking mappings and sequences."""
    try:
        if isinstance(value, Mapping):
            return {str(key): _redact_field(key, item) for key, item in value.items()}
        if isinstance(value, list | tuple):
            return type(value)(redact_data(item) for item in value)
        if isinstance(value, str):
            return sanitize_text(value)
        return value
    except Exception:  # noqa: BLE001
        return REDACTED


def sanitize_mapping(d: Mapping[str, Any]) -> dict[str, Any]:
    return redact_data(d)
