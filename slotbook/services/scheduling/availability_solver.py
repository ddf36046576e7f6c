"""
Availability Solver
Finds bookable windows between busy intervals, one candidate per gap,
searching forward day by day only while earlier days are fully booked.
"""

from datetime import UTC, date, datetime, timedelta
from zoneinfo import ZoneInfo

from slotbook.config import settings
from slotbook.infrastructure.observability.logging import get_logger
from slotbook.models.domain.calendar_domain import CalendarCredential
from slotbook.models.domain.scheduling_domain import BusyInterval, TimelineSegment, TimeSlot
from slotbook.services.calendar.google_client import CALENDAR_PRIMARY
from slotbook.services.scheduling.busy_intervals import BusyIntervalExtractor, working_window
from slotbook.services.scheduling.errors import BookingValidationError

logger = get_logger(__name__)

BEFORE_DAY_LABEL = "Before your day starts"
AFTER_DAY_LABEL = "After your last appointment"

# Canonical candidates for a day with no busy time; None means the window start
CANONICAL_SLOTS: tuple[tuple[str, int | None], ...] = (
    ("Morning", None),
    ("Midday", 12),
    ("Evening", 18),
)


def _ceil_minute(moment: datetime) -> datetime:
    floored = moment.replace(second=0, microsecond=0)
    return floored if floored == moment else floored + timedelta(minutes=1)


def _between_label(previous: BusyInterval, following: BusyInterval) -> str:
    return f'Between "{previous.label}" and "{following.label}"'


def day_label(day: date, today: date) -> str:
    offset = (day - today).days
    if offset == 0:
        return "Today"
    if offset == 1:
        return "Tomorrow"
    return day.strftime("%A")


def solve_day(
    intervals: list[BusyInterval],
    window_start: datetime,
    window_end: datetime,
    duration_minutes: int,
    now: datetime | None = None,
) -> list[TimeSlot]:
    """
    Candidate slots for a single day.

    Walks a cursor across the window and emits `[cursor, cursor + duration)`
    for every gap long enough to hold it, then a trailing slot if the tail
    fits. A day without busy time gets the canonical morning/midday/evening
    candidates instead. Nothing is produced before `now`.
    """
    duration = timedelta(minutes=duration_minutes)
    cursor = window_start
    if now is not None and now > cursor:
        cursor = _ceil_minute(now)
    if cursor + duration > window_end:
        return []

    def make_slot(start: datetime, label: str) -> TimeSlot:
        return TimeSlot(
            start=start,
            end=start + duration,
            duration_minutes=duration_minutes,
            label=label,
        )

    ordered = sorted(intervals, key=lambda i: i.start)

    if not ordered:
        slots = []
        seen: set[datetime] = set()
        for label, hour in CANONICAL_SLOTS:
            if hour is None:
                start = window_start
            else:
                start = window_start.replace(hour=hour, minute=0, second=0, microsecond=0)
            if start in seen or start < cursor or start + duration > window_end:
                continue
            seen.add(start)
            slots.append(make_slot(start, label))
        return slots

    slots = []
    previous: BusyInterval | None = None
    for interval in ordered:
        if interval.start - cursor >= duration:
            label = BEFORE_DAY_LABEL if previous is None else _between_label(previous, interval)
            slots.append(make_slot(cursor, label))
        cursor = max(cursor, interval.end)
        previous = interval

    if window_end - cursor >= duration:
        slots.append(make_slot(cursor, AFTER_DAY_LABEL))

    return slots


def build_timeline(
    intervals: list[BusyInterval], window_start: datetime, window_end: datetime
) -> list[TimelineSegment]:
    """Alternating free/busy segments covering the whole working window."""
    segments: list[TimelineSegment] = []
    cursor = window_start
    for interval in sorted(intervals, key=lambda i: i.start):
        start = max(interval.start, window_start)
        end = min(interval.end, window_end)
        if end <= cursor:
            continue
        if start > cursor:
            segments.append(TimelineSegment(start=cursor, end=start, available=True, label="Free"))
        segments.append(
            TimelineSegment(start=max(start, cursor), end=end, available=False, label=interval.label)
        )
        cursor = end

    if cursor < window_end:
        segments.append(TimelineSegment(start=cursor, end=window_end, available=True, label="Free"))
    return segments


class AvailabilitySolver:
    """Multi-day slot search over the busy-interval extractor."""

    def __init__(
        self,
        extractor: BusyIntervalExtractor | None = None,
        tz: ZoneInfo | None = None,
        result_cap: int | None = None,
        max_horizon_days: int | None = None,
    ):
        self.tz = tz or settings.scheduling_tz()
        self.extractor = extractor or BusyIntervalExtractor(tz=self.tz)
        self.result_cap = result_cap or settings.SLOT_RESULT_CAP
        self.max_horizon_days = max_horizon_days or settings.MAX_HORIZON_DAYS

    def _window(self, day: date) -> tuple[datetime, datetime]:
        return working_window(day, self.tz, self.extractor.day_start_hour, self.extractor.day_end_hour)

    async def find_available_slots(
        self,
        credential: CalendarCredential,
        start_date: date,
        duration_minutes: int,
        horizon_days: int = 1,
        now: datetime | None = None,
        calendar_id: str = CALENDAR_PRIMARY,
    ) -> list[TimeSlot]:
        """
        Slots on the first day of the horizon that has any, capped.

        Returns [] when the horizon is exhausted; raises BookingValidationError
        for a non-positive duration. Extractor errors propagate unchanged.
        """
        if duration_minutes <= 0:
            raise BookingValidationError(f"Duration must be positive, got {duration_minutes}")

        horizon = max(1, min(self.max_horizon_days, horizon_days))
        now = now or datetime.now(UTC)
        today = now.astimezone(self.tz).date()

        collected: list[TimeSlot] = []
        for offset in range(horizon):
            day = start_date + timedelta(days=offset)
            window_start, window_end = self._window(day)
            if window_end <= now:
                continue

            intervals = await self.extractor.extract(credential, day, calendar_id)
            day_slots = solve_day(intervals, window_start, window_end, duration_minutes, now)

            label = day_label(day, today)
            for slot in day_slots:
                slot.days_from_now = (day - today).days
                slot.day_label = label
            collected.extend(day_slots)

            if day_slots or len(collected) >= self.result_cap:
                break

        collected.sort(key=lambda s: s.start)
        result = collected[: self.result_cap]

        logger.info(
            "Availability search completed",
            user_id=credential.user_id,
            start_date=start_date.isoformat(),
            duration_minutes=duration_minutes,
            horizon_days=horizon,
            slot_count=len(result),
        )
        return result

    async def timeline(
        self, credential: CalendarCredential, day: date, calendar_id: str = CALENDAR_PRIMARY
    ) -> list[TimelineSegment]:
        intervals = await self.extractor.extract(credential, day, calendar_id)
        window_start, window_end = self._window(day)
        return build_timeline(intervals, window_start, window_end)
