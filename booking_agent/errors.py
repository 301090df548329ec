"""Error taxonomy for the booking agent.

Every domain error carries a ``kind`` so the tool dispatcher can turn it
into a structured ``{"success": False, "error": ..., "error_kind": ...}``
result for the model.  Only ``TenantMismatchError`` escapes the dispatcher;
it aborts the whole turn.
"""

from __future__ import annotations


class BookingAgentError(Exception):
    """Base class for all booking agent errors.

    ``details`` holds extra fields the model can act on (alternative
    times, candidate names...).
    """

    kind = "error"

    def __init__(self, message: str = "", *, details: dict | None = None):
        self.details = details or {}
        super().__init__(message)


class NotFoundError(BookingAgentError):
    """An entity reference did not resolve to any record of the tenant."""

    kind = "not_found"


class AmbiguousMatchError(BookingAgentError):
    """A fuzzy entity match scored below the acceptance threshold."""

    kind = "ambiguous"

    def __init__(self, message: str, candidates: list[str] | None = None):
        self.candidates = candidates or []
        super().__init__(message, details={"candidates": self.candidates})


class SlotTakenError(BookingAgentError):
    """The requested (professional, date, interval) is already reserved."""

    kind = "slot_taken"


class RateLimitedError(BookingAgentError):
    """The model provider kept throttling after all backoff retries."""

    kind = "rate_limited"


class ToolTimeoutError(BookingAgentError):
    """A tool or model call exceeded its time bound."""

    kind = "timeout"


class InvalidIdentifierError(BookingAgentError):
    """An identifier was malformed and was rejected before any store call."""

    kind = "invalid_identifier"


class TenantMismatchError(BookingAgentError):
    """A record belonging to another tenant was addressed."""

    kind = "tenant_mismatch"


class ToolArgumentsError(BookingAgentError):
    """The model sent arguments that failed validation."""

    kind = "validation"


class PreconditionError(BookingAgentError):
    """A required field (client name, professional...) is still unknown."""

    kind = "precondition"


class InvalidTransitionError(BookingAgentError):
    """An appointment status change that the lifecycle does not allow."""

    kind = "invalid_transition"
