"""
Busy-Interval Extractor
Turns one calendar day of provider events into sorted, merged busy
intervals clipped to the working window.
"""

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from slotbook.config import settings
from slotbook.infrastructure.observability.logging import get_logger
from slotbook.models.domain.calendar_domain import CalendarCredential, ProviderEvent
from slotbook.models.domain.scheduling_domain import BusyInterval
from slotbook.services.calendar.google_client import (
    CALENDAR_PRIMARY,
    GoogleCalendarError,
    GoogleCalendarService,
    google_calendar_service,
)
from slotbook.services.scheduling.errors import translate_calendar_error

logger = get_logger(__name__)


def working_window(
    day: date, tz: ZoneInfo, start_hour: int | None = None, end_hour: int | None = None
) -> tuple[datetime, datetime]:
    """[start, end) of the bookable part of `day` in `tz`."""
    start_hour = settings.DAY_START_HOUR if start_hour is None else start_hour
    end_hour = settings.DAY_END_HOUR if end_hour is None else end_hour
    midnight = datetime.combine(day, time.min, tzinfo=tz)
    return midnight + timedelta(hours=start_hour), midnight + timedelta(hours=end_hour)


def clip_events(
    events: list[ProviderEvent], window_start: datetime, window_end: datetime, tz: ZoneInfo
) -> list[BusyInterval]:
    """Busy events clipped to the window; free-time, cancelled and out-of-window events dropped."""
    intervals = []
    for event in events:
        if not event.is_busy():
            continue

        start = max(event.start.resolve(tz), window_start)
        end = min(event.end.resolve(tz), window_end)
        if start >= end:
            continue

        intervals.append(BusyInterval(start=start, end=end, label=event.display_name()))
    return intervals


def merge_intervals(intervals: list[BusyInterval]) -> list[BusyInterval]:
    """Sort by start and merge overlapping intervals, joining their labels."""
    merged: list[BusyInterval] = []
    for interval in sorted(intervals, key=lambda i: (i.start, i.end)):
        if merged and interval.start < merged[-1].end:
            last = merged[-1]
            last.end = max(last.end, interval.end)
            if interval.label not in last.label.split(" & "):
                last.label = f"{last.label} & {interval.label}"
            continue
        merged.append(BusyInterval(start=interval.start, end=interval.end, label=interval.label))
    return merged


class BusyIntervalExtractor:
    """Reads one day of events from the calendar provider."""

    def __init__(
        self,
        calendar_service: GoogleCalendarService | None = None,
        tz: ZoneInfo | None = None,
        day_start_hour: int | None = None,
        day_end_hour: int | None = None,
    ):
        self.calendar_service = calendar_service or google_calendar_service
        self.tz = tz or settings.scheduling_tz()
        self.day_start_hour = settings.DAY_START_HOUR if day_start_hour is None else day_start_hour
        self.day_end_hour = settings.DAY_END_HOUR if day_end_hour is None else day_end_hour

    def window_for(self, day: date) -> tuple[datetime, datetime]:
        return working_window(day, self.tz, self.day_start_hour, self.day_end_hour)

    async def extract(
        self, credential: CalendarCredential, day: date, calendar_id: str = CALENDAR_PRIMARY
    ) -> list[BusyInterval]:
        """
        Busy intervals for `day`, sorted and non-overlapping.

        Raises:
            AuthExpired: provider rejected the credential
            UpstreamUnavailable: provider unreachable or failing (UpstreamTimeout on deadline)
        """
        day_start = datetime.combine(day, time.min, tzinfo=self.tz)
        day_end = day_start + timedelta(days=1)
        window_start, window_end = self.window_for(day)

        try:
            events = await self.calendar_service.list_events(
                credential.access_token, day_start, day_end, calendar_id=calendar_id
            )
        except GoogleCalendarError as e:
            error = translate_calendar_error(e)
            logger.warning(
                "Busy interval extraction failed",
                user_id=credential.user_id,
                day=day.isoformat(),
                error_kind=error.kind,
            )
            raise error from e

        intervals = merge_intervals(clip_events(events, window_start, window_end, self.tz))

        logger.debug(
            "Busy intervals extracted",
            user_id=credential.user_id,
            day=day.isoformat(),
            event_count=len(events),
            interval_count=len(intervals),
        )
        return intervals
