from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime

from dcabot.domain.errors import PlanValidationError
from dcabot.domain.models import User, utc_now
from dcabot.services.plan_registry import PlanRegistry

logger = logging.getLogger(__name__)


class UserDirectory:
    def __init__(
        self, registry: PlanRegistry, *, clock: Callable[[], datetime] = utc_now
    ) -> None:
        self._registry = registry
        self._clock = clock

    async def get_user(self, user_id: str) -> User | None:
        return await self._registry.get_user(user_id)

    async def get_user_by_address(self, address: str) -> User | None:
        cleaned = (address or "").strip()
        if not cleaned:
            return None
        return await self._registry.get_user_by_address(cleaned)

    async def register(self, address: str) -> User:
        """Create a user for ``address`` or return the one already holding it."""
        cleaned = (address or "").strip()
        if not cleaned:
            raise PlanValidationError("address is required")
        candidate = User(user_id=uuid.uuid4().hex, address=cleaned, created_at=self._clock())
        user, created = await self._registry.get_or_create_user(candidate)
        logger.info(
            "user_registered" if created else "user_login",
            extra={"extra": {"user_id": user.user_id}},
        )
        return user
