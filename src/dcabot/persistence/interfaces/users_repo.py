from __future__ import annotations

from typing import Protocol

from dcabot.domain.models import User


class UsersRepoProtocol(Protocol):
    def get(self, user_id: str) -> User | None: ...

    def get_by_address(self, address: str) -> User | None: ...

    def insert(self, user: User) -> None: ...
