from __future__ import annotations

from pathlib import Path

import pytest

from dcabot.runtime.guards import normalize_db_path


def test_normalize_db_path_fails_when_empty() -> None:
    with pytest.raises(ValueError, match="cannot be empty"):
        normalize_db_path("   ")


def test_normalize_db_path_requires_db_suffix(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="must end with '.db'"):
        normalize_db_path(str(tmp_path / "state.sqlite"))


def test_normalize_db_path_creates_parent_dir(tmp_path: Path) -> None:
    db_path = normalize_db_path(str(tmp_path / "nested" / "dca.db"))

    assert db_path.is_absolute()
    assert db_path.parent.is_dir()
    assert not db_path.exists()


def test_normalize_db_path_resolves_relative_paths(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)

    assert normalize_db_path("dca.db") == (tmp_path / "dca.db").resolve()
