"""
Error types raised by the pricing core.
"""

from typing import Optional


class InvalidPrice(ValueError):
    """Raised when a price is negative, non-finite or not a number."""
    pass


class ScheduleValidationError(ValueError):
    """A submitted schedule window or item set violates a validation rule."""

    def __init__(self, rule: str, detail: str):
        super().__init__(detail)
        self.rule = rule
        self.detail = detail


class QuotaDenied(Exception):
    """The tenant's plan does not permit the requested operation."""

    def __init__(self, limit: str, reason: str):
        super().__init__(reason)
        self.limit = limit
        self.reason = reason


class ScheduleConflict(Exception):
    """A schedule with the same idempotency key already exists."""

    def __init__(self, idempotency_key: str, schedule_id: Optional[str] = None):
        super().__init__(f"Duplicate submission (idempotency key {idempotency_key})")
        self.idempotency_key = idempotency_key
        self.schedule_id = schedule_id


class ScheduleNotFound(Exception):
    """Schedule is absent or owned by another tenant."""

    def __init__(self, schedule_id: str):
        super().__init__(f"Schedule '{schedule_id}' not found")
        self.schedule_id = schedule_id


class StaleTransition(Exception):
    """Compare-and-swap on a schedule status lost against the persisted state."""

    def __init__(self, schedule_id: str, expected: str, actual: Optional[str]):
        super().__init__(
            f"Schedule {schedule_id}: expected status {expected}, found {actual}"
        )
        self.schedule_id = schedule_id
        self.expected = expected
        self.actual = actual


class InvalidTransition(ValueError):
    """Requested status edge is not part of the schedule lifecycle."""
    pass
