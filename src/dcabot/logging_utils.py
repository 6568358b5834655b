from __future__ import annotations

import json
import logging
import os
import uuid
from datetime import UTC, datetime
from typing import Any

from dcabot.logging_context import LOGGING_FIELDS, get_logging_context
from dcabot.security.redaction import redact_data

# Identifies this process in every line unless a caller binds its own run_id.
RUN_ID = uuid.uuid4().hex[:12]

# Logger name to the env var that overrides its level.
_HTTP_LOGGERS = {"httpx": "HTTPX_LOG_LEVEL", "httpcore": "HTTPCORE_LOG_LEVEL"}


class JsonFormatter(logging.Formatter):
    """One JSON object per line; secrets are masked before serialization."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extras = getattr(record, "extra", None)
        if isinstance(extras, dict):
            payload.update(extras)

        context = get_logging_context()
        payload.update({field: context.get(field) for field in LOGGING_FIELDS})
        payload["run_id"] = payload["run_id"] or RUN_ID
        payload.update(self._exception_fields(record))
        return json.dumps(redact_data(payload), default=str)

    def _exception_fields(self, record: logging.LogRecord) -> dict[str, str]:
        if not record.exc_info:
            return {"traceback": record.exc_text} if record.exc_text else {}
        exc_type, exc_value, _ = record.exc_info
        return {
            "error_type": exc_type.__name__ if exc_type else "Exception",
            "error_message": "" if exc_value is None else str(exc_value),
            "traceback": self.formatException(record.exc_info),
        }


def _parse_level(raw: str | int | None, default: int) -> int:
    if isinstance(raw, int):
        return raw
    if raw is None or not str(raw).strip():
        return default
    resolved = logging.getLevelName(str(raw).strip().upper())
    return resolved if isinstance(resolved, int) else default


def setup_logging(level: str | int | None = None) -> None:
    """Route the root logger through ``JsonFormatter`` on stderr.

    ``level`` falls back to ``LOG_LEVEL``. httpx logs a line per request at INFO, so
    the HTTP client loggers stay at WARNING unless DEBUG is requested or
    ``HTTPX_LOG_LEVEL``/``HTTPCORE_LOG_LEVEL`` say otherwise.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)

    resolved = _parse_level(level if level is not None else os.getenv("LOG_LEVEL"), logging.INFO)
    root.setLevel(resolved)

    http_default = logging.DEBUG if resolved <= logging.DEBUG else logging.WARNING
    for name, env_name in _HTTP_LOGGERS.items():
        logging.getLogger(name).setLevel(_parse_level(os.getenv(env_name), http_default))
