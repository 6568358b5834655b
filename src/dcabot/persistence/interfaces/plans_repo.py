from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Protocol

from dcabot.domain.models import Plan


class PlansRepoProtocol(Protocol):
    def get(self, plan_id: str) -> Plan | None: ...

    def save(self, plan: Plan) -> None: ...

    def set_active(self, plan_id: str, *, is_active: bool, updated_at: datetime) -> bool: ...

    def record_execution(self, plan: Plan, *, expected_execution_count: int) -> None: ...

    def list_active(self) -> list[Plan]: ...

    def list_by_user(self, user_id: str) -> list[Plan]: ...

    def sum_invested_by_user(self, user_id: str) -> Decimal: ...
