from __future__ import annotations

import fcntl
import hashlib
import os
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path


class SchedulerAlreadyRunningError(RuntimeError):
    pass


@dataclass(frozen=True)
class ProcessLock:
    path: str
    pid: int


def get_lock_dir() -> Path:
    configured = os.getenv("DCABOT_LOCK_DIR")
    if configured:
        lock_dir = Path(configured).expanduser()
    else:
        lock_dir = Path(tempfile.gettempdir()) / "dcabot-locks"
    lock_dir.mkdir(parents=True, exist_ok=True)
    return lock_dir.resolve()


def lock_path_for(db_path: str) -> Path:
    """One lock file per resolved state database, so relative and absolute paths agree."""
    resolved = str(Path(db_path).expanduser().resolve())
    return get_lock_dir() / f"dcabot-{hashlib.sha256(resolved.encode()).hexdigest()[:16]}.lock"


def _owner_pid(path: Path) -> int | None:
    try:
        content = path.read_text(encoding="utf-8").strip()
    except OSError:
        return None
    return int(content) if content.isdigit() else None


def _stamp(fd: int, content: str) -> None:
    os.ftruncate(fd, 0)
    os.pwrite(fd, content.encode(), 0)


@contextmanager
def single_instance_lock(*, db_path: str) -> Iterator[ProcessLock]:
    """Exclusive flock held while the scheduler owns ``db_path``.

    The holder's pid is written into the lock file and cleared on release. flock is
    advisory and only dependable on local filesystems.
    """
    path = lock_path_for(db_path)
    fd = os.open(path, os.O_CREAT | os.O_RDWR, 0o644)
    try:
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            owner = _owner_pid(path)
            suffix = "" if owner is None else f" owner_pid={owner}"
            raise SchedulerAlreadyRunningError(
                "LOCKED: a dcabot scheduler already owns "
                f"db_path={db_path} lock_path={path}.{suffix}"
            ) from exc

        pid = os.getpid()
        _stamp(fd, f"{pid}\n")
        try:
            yield ProcessLock(path=str(path), pid=pid)
        finally:
            _stamp(fd, "")
            fcntl.flock(fd, fcntl.LOCK_UN)
    finally:
        os.close(fd)
