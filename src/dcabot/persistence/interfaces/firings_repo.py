from __future__ import annotations

from typing import Protocol

from dcabot.domain.models import FiringOutcome, FiringRecord


class FiringsRepoProtocol(Protocol):
    def record_firing(self, outcome: FiringOutcome) -> None: ...

    def list_for_plan(self, plan_id: str, *, limit: int = 50) -> list[FiringRecord]: ...
