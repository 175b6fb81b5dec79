"""Expected, recoverable outcomes of scheduling operations.

Each error carries a ``kind`` string so callers can translate it without
matching on class names. Storage failures are not wrapped and reach the
caller unchanged.
"""


class ReservationError(Exception):
    kind = "reservation_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(ReservationError):
    kind = "not_found"


class UnavailableError(ReservationError):
    kind = "unavailable"


class CapacityExceededError(ReservationError):
    kind = "capacity_exceeded"


class InvalidTransitionError(ReservationError):
    kind = "invalid_transition"


class ConflictError(ReservationError):
    """Another transaction wrote the same rows first; retry the whole operation."""

    kind = "conflict"


class InvalidRequestError(ReservationError, ValueError):
    """The request itself is malformed or outside the booking rules."""

    kind = "invalid_request"
