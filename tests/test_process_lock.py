from __future__ import annotations

import os
from pathlib import Path

import pytest

from dcabot.services.process_lock import (
    SchedulerAlreadyRunningError,
    lock_path_for,
    single_instance_lock,
)


def test_single_instance_lock_blocks_second_acquire(tmp_path: Path) -> None:
    db_path = str(tmp_path / "state.db")
    with single_instance_lock(db_path=db_path):
        with pytest.raises(SchedulerAlreadyRunningError, match="LOCKED:"):
            with single_instance_lock(db_path=db_path):
                pass


def test_single_instance_lock_reacquire_after_release(tmp_path: Path) -> None:
    db_path = str(tmp_path / "state.db")
    with single_instance_lock(db_path=db_path):
        pass

    with single_instance_lock(db_path=db_path):
        pass


def test_single_instance_lock_writes_pid_and_clears_it(tmp_path: Path) -> None:
    db_path = str(tmp_path / "state.db")
    with single_instance_lock(db_path=db_path) as lock:
        assert lock.pid == os.getpid()
        assert Path(lock.path).read_text(encoding="utf-8").strip() == str(lock.pid)

    assert Path(lock.path).read_text(encoding="utf-8") == ""


def test_single_instance_lock_error_includes_owner_pid(tmp_path: Path) -> None:
    db_path = str(tmp_path / "state.db")
    with single_instance_lock(db_path=db_path) as lock:
        with pytest.raises(SchedulerAlreadyRunningError, match=f"owner_pid={lock.pid}"):
            with single_instance_lock(db_path=db_path):
                pass


def test_lock_scope_follows_normalized_db_path(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)

    assert lock_path_for("state.db") == lock_path_for(str(tmp_path / "state.db"))
    assert lock_path_for("state.db") != lock_path_for("other.db")
    assert lock_path_for("state.db").parent == (tmp_path / "locks").resolve()
