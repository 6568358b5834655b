from dcabot.security.redaction import (
    REDACTED,
    SENSITIVE_KEYS,
    is_sensitive_key,
    mask_secret,
    redact_data,
    sanitize_mapping,
    sanitize_text,
)
from dcabot.security.secrets import (
    RUNTIME_SECRET_KEYS,
    ChainedSecretProvider,
    DotenvSecretProvider,
    EnvSecretProvider,
    build_default_provider,
    inject_runtime_secrets,
    read_dotenv,
)

__all__ = [
    "REDACTED",
    "SENSITIVE_KEYS",
    "is_sensitive_key",
    "mask_secret",
    "redact_data",
    "sanitize_mapping",
    "sanitize_text",
    "RUNTIME_SECRET_KEYS",
    "ChainedSecretProvider",
    "DotenvSecretProvider",
    "EnvSecretProvider",
    "build_default_provider",
    "inject_runtime_secrets",
    "read_dotenv",
]
