from __future__ import annotations

from typing import Protocol

from dcabot.domain.models import TrendEstimate


class TrendEstimator(Protocol):
    async def estimate_trend(self, asset_id: str) -> TrendEstimate:
        """Return the recent price trend for ``asset_id`` or raise ``TrendEstimateError``."""
        ...

    async def aclose(self) -> None: ...
