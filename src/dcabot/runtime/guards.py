from __future__ import annotations

from pathlib import Path

_DB_PATH_EXAMPLE = "STATE_DB_PATH=/var/lib/dcabot/state.db"


def normalize_db_path(raw: str) -> Path:
    """Resolve ``STATE_DB_PATH`` to an absolute ``.db`` file whose directory exists."""
    if not raw.strip():
        raise ValueError(f"STATE_DB_PATH is required and cannot be empty, e.g. {_DB_PATH_EXAMPLE}")
    path = Path(raw.strip()).expanduser().resolve()
    if path.suffix.lower() != ".db":
        raise ValueError(f"STATE_DB_PATH must end with '.db', e.g. {_DB_PATH_EXAMPLE}")
    path.parent.mkdir(parents=True, exist_ok=True)
    return path
