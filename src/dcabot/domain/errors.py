from __future__ import annotations

from enum import StrEnum


class PlanValidationError(ValueError):
    """Raised when a plan request is rejected before it reaches the scheduler."""


class PlanNotFoundError(LookupError):
    def __init__(self, plan_id: str) -> None:
        super().__init__(f"plan not found: {plan_id}")
        self.plan_id = plan_id


class UserNotFoundError(LookupError):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"user not found: {user_id}")
        self.user_id = user_id


class TransferErrorCategory(StrEnum):
    TRANSIENT = "transient"
    TIMEOUT = "timeout"
    REJECTED = "rejected"
    AUTH = "auth"
    CONFIGURATION = "configuration"
    FATAL = "fatal"


class TransferError(RuntimeError):
    """Raised when a ledger transfer could not be completed."""

    def __init__(
        self,
        message: str,
        *,
        category: TransferErrorCategory = TransferErrorCategory.FATAL,
        status_code: int | None = None,
        chain: str | None = None,
    ) -> None:
        super().__init__(message)
        self.category = category
        self.status_code = status_code
        self.chain = chain


class TrendEstimateError(RuntimeError):
    """Raised when a price trend could not be estimated."""


class RegistryUnavailableError(RuntimeError):
    """Raised when durable plan storage cannot be reached."""


class PersistenceConflictError(RuntimeError):
    """Raised when a plan row changed between read and execution-state write."""
