"""
Booking Validator
Optimistic concurrency check run immediately before an event is written:
reject stale selections, then re-ask the provider whether the slot is free.
"""

from datetime import UTC, datetime, timedelta

from slotbook.config import settings
from slotbook.infrastructure.observability.logging import get_logger
from slotbook.models.domain.calendar_domain import CalendarCredential
from slotbook.models.domain.scheduling_domain import BookingRequest
from slotbook.services.calendar.google_client import (
    CALENDAR_PRIMARY,
    GoogleCalendarError,
    GoogleCalendarService,
    google_calendar_service,
)
from slotbook.services.scheduling.errors import SlotConflict, StaleSlot, translate_calendar_error

logger = get_logger(__name__)


class BookingValidator:
    def __init__(
        self,
        calendar_service: GoogleCalendarService | None = None,
        staleness_window_seconds: int | None = None,
    ):
        self.calendar_service = calendar_service or google_calendar_service
        self.staleness_window = timedelta(
            seconds=staleness_window_seconds or settings.STALENESS_WINDOW_SECONDS
        )

    def check_freshness(self, request: BookingRequest, now: datetime | None = None) -> None:
        """Raise StaleSlot if the slot list is older than the staleness window."""
        now = now or datetime.now(UTC)
        age = now - request.fetched_at
        if age > self.staleness_window:
            logger.info(
                "Booking request is stale",
                age_seconds=int(age.total_seconds()),
                window_seconds=int(self.staleness_window.total_seconds()),
            )
            raise StaleSlot(f"Slot list fetched {int(age.total_seconds())}s ago")

    async def validate_availability(
        self,
        credential: CalendarCredential,
        start: datetime,
        end: datetime,
        calendar_ids: list[str] | None = None,
    ) -> None:
        """
        Raise SlotConflict if any selected calendar is busy inside [start, end).

        Provider failures are raised as taxonomy errors.
        """
        calendar_ids = calendar_ids or [CALENDAR_PRIMARY]
        try:
            free_busy = await self.calendar_service.free_busy(
                credential.access_token, start, end, calendar_ids
            )
        except GoogleCalendarError as e:
            raise translate_calendar_error(e) from e

        for calendar_id, errors in free_busy.calendars_with_errors().items():
            logger.warning(
                "Free/busy returned calendar errors",
                user_id=credential.user_id,
                calendar_id=calendar_id,
                errors=errors,
            )

        conflicts = [p for p in free_busy.all_busy_periods() if p.overlaps(start, end)]
        if conflicts:
            logger.info(
                "Slot conflict detected",
                user_id=credential.user_id,
                slot_start=start.isoformat(),
                conflict_count=len(conflicts),
            )
            raise SlotConflict(f"{len(conflicts)} busy period(s) overlap {start.isoformat()}")

    async def validate(
        self,
        credential: CalendarCredential,
        request: BookingRequest,
        calendar_ids: list[str] | None = None,
        now: datetime | None = None,
    ) -> None:
        self.check_freshness(request, now)
        await self.validate_availability(credential, request.slot_start, request.slot_end, calendar_ids)
