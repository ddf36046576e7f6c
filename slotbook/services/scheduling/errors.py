"""
Booking error taxonomy.
Every upstream failure is translated into one of these kinds before it
reaches a caller; raw provider payloads only survive as diagnostic text.
"""

from slotbook.services.calendar.google_client import GoogleCalendarError

RESELECT_MESSAGE = "That time slot just filled up. Let's refresh and find you a new time that works."
RECONNECT_MESSAGE = "Your Google Calendar connection has expired. Please reconnect your account."
UPSTREAM_MESSAGE = "We couldn't reach your calendar right now. Please try again in a few minutes."


class BookingError(Exception):
    """Base exception for availability and booking operations."""

    kind = "booking_error"
    default_user_message = "Unable to add this to your calendar. Please try again later."
    default_retryable = False

    def __init__(
        self,
        message: str,
        user_message: str | None = None,
        retryable: bool | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.user_message = user_message or self.default_user_message
        self.retryable = self.default_retryable if retryable is None else retryable
        self.status_code = status_code


class AuthExpired(BookingError):
    kind = "auth_expired"
    default_user_message = RECONNECT_MESSAGE


class StaleSlot(BookingError):
    kind = "stale_slot"
    default_user_message = RESELECT_MESSAGE


class SlotConflict(BookingError):
    kind = "slot_conflict"
    default_user_message = RESELECT_MESSAGE


class BookingConflict(SlotConflict):
    """The provider refused the write because the slot was taken (HTTP 409)."""

    kind = "conflict"
    default_user_message = (
        "That time slot conflicts with another event on your calendar. Please choose a different time."
    )


class UpstreamUnavailable(BookingError):
    kind = "upstream_unavailable"
    default_user_message = UPSTREAM_MESSAGE
    default_retryable = True


class UpstreamTimeout(UpstreamUnavailable):
    kind = "timeout"


class UpstreamRejected(UpstreamUnavailable):
    """The provider refused the request outright (4xx other than auth and conflict)."""

    kind = "upstream_rejected"
    default_user_message = "Your calendar rejected this booking. Please check the details and try again."
    default_retryable = False


class BookingValidationError(BookingError):
    kind = "validation_error"
    default_user_message = "The booking request is incomplete or malformed."


# Failures caused by the caller's input rather than by the call itself.
INPUT_ERROR_KINDS = frozenset({StaleSlot.kind, SlotConflict.kind, BookingValidationError.kind})

# Google reports quota exhaustion as 403 with one of these reasons.
RATE_LIMIT_REASONS = frozenset(
    {"rateLimitExceeded", "userRateLimitExceeded", "quotaExceeded", "dailyLimitExceeded"}
)

# Kinds an explicit retry may re-attempt.
RETRYABLE_KINDS = frozenset({UpstreamUnavailable.kind, UpstreamTimeout.kind, AuthExpired.kind})


def _error_reasons(error: GoogleCalendarError) -> set[str]:
    info = error.response_data.get("error")
    if not isinstance(info, dict):
        return set()
    return {e.get("reason") for e in info.get("errors") or [] if isinstance(e, dict)}


def translate_calendar_error(error: GoogleCalendarError) -> BookingError:
    """Map a provider client error onto the booking taxonomy."""
    detail = str(error)
    status_code = error.status_code

    if error.error_code == "timeout":
        return UpstreamTimeout(detail)
    if status_code == 401:
        return AuthExpired(detail, status_code=status_code)
    if status_code == 403 and _error_reasons(error) & RATE_LIMIT_REASONS:
        return UpstreamUnavailable(detail, status_code=status_code)
    if status_code == 409:
        return BookingConflict(detail, status_code=status_code)
    if status_code is None or status_code == 429 or status_code >= 500:
        return UpstreamUnavailable(detail, status_code=status_code)

    return UpstreamRejected(detail, status_code=status_code)
