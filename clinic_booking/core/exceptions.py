"""
Booking error taxonomy.

Services raise these before touching any row, so a caller can branch on the
class alone. Only ``TransientError`` is worth retrying with the same input.
"""
from typing import Optional


class BookingError(Exception):
    """Base class for every failure reported by the booking core."""

    status_code: int = 400
    retryable: bool = False
    user_message: str = "The request could not be completed"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.user_message
        super().__init__(self.detail)


class NotFoundError(BookingError):
    """Referenced slot, appointment, provider or patient does not exist."""

    status_code = 404
    user_message = "Appointment or slot not found"


class ConflictError(BookingError):
    """Slot unavailable, provider mismatch, forbidden transition or missing rights."""

    status_code = 409
    user_message = "Slot no longer available, please choose another"


class ValidationError(BookingError):
    """Malformed input, e.g. an unknown status or a slot ending before it starts."""

    status_code = 422
    user_message = "Invalid request data"


class TransientError(BookingError):
    """Storage unreachable, lock timeout or deadlock. Safe to retry."""

    status_code = 503
    retryable = True
    user_message = "The service is temporarily unavailable, please try again"
