"""Error taxonomy for the scheduling core.

Every error carries a machine-readable ``code`` and the HTTP status the
blueprint renders it with, so request handlers never have to translate
exceptions by hand.
"""
from __future__ import annotations


class SchedulingError(Exception):
    """Base class for every error raised by the scheduling core."""

    code = "scheduling_error"
    status_code = 400

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code

    def to_dict(self) -> dict[str, object]:
        return {"error": self.code, "message": self.message}


class ValidationError(SchedulingError):
    """Malformed input: bad time ranges, non-positive durations, missing fields."""

    code = "invalid_payload"
    status_code = 400


class InvalidArgument(ValidationError):
    """A calculator was called outside its contract (e.g. zero duration)."""

    code = "invalid_argument"


class NotFoundError(SchedulingError):
    code = "not_found"
    status_code = 404


class ConflictError(SchedulingError):
    """The request was valid but the schedule no longer allows it."""

    code = "conflict"
    status_code = 409
    overridable = False

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["overridable"] = self.overridable
        return payload


class SlotNoLongerAvailable(ConflictError):
    code = "slot_no_longer_available"


class OutsideBusinessHours(ConflictError):
    code = "outside_business_hours"


class OutsideCustomerAvailability(ConflictError):
    """Soft conflict: staff may book anyway by passing an explicit override."""

    code = "outside_customer_availability"
    overridable = True


class InvariantViolation(SchedulingError):
    """A lifecycle rule was broken; ``reason_code`` tells the caller which prompt to show."""

    code = "invariant_violation"
    status_code = 422

    def __init__(self, message: str, *, reason_code: str) -> None:
        super().__init__(message)
        self.reason_code = reason_code

    def to_dict(self) -> dict[str, object]:
        payload = super().to_dict()
        payload["reason_code"] = self.reason_code
        return payload
