from __future__ import annotations

from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from types import MappingProxyType


LOGGING_FIELDS = ("run_id", "plan_id", "user_id", "firing_id")

_current: ContextVar[Mapping[str, str]] = ContextVar(
    "dcabot_logging_context", default=MappingProxyType({})
)


def get_logging_context() -> dict[str, str]:
    return dict(_current.get())


@contextmanager
def with_logging_context(**fields: str | None) -> Iterator[None]:
    """Bind known, non-None fields for log records emitted inside the block.

    Nested blocks layer on top of the outer bindings and restore them on exit.
    """
    merged = dict(_current.get())
    merged.update(
        {key: value for key, value in fields.items() if key in LOGGING_FIELDS and value is not None}
    )
    token = _current.set(MappingProxyType(merged))
    try:
        yield
    finally:
        _current.reset(token)


@contextmanager
def with_firing_context(
    *, plan_id: str, firing_id: str, user_id: str | None = None
) -> Iterator[None]:
    with with_logging_context(plan_id=plan_id, firing_id=firing_id, user_id=user_id):
        yield
