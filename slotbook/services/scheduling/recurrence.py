"""
Recurring booking candidates.
Expands a daily/weekly pattern into concrete occurrences; each one is
booked as an independent attempt by the commit coordinator.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Literal

from dateutil.rrule import DAILY, FR, MO, SA, SU, TH, TU, WE, WEEKLY, rrule, weekday

from slotbook.models.domain.scheduling_domain import BookingRequest
from slotbook.services.scheduling.errors import BookingValidationError
from slotbook.services.scheduling.slot_scorer import DAY_ABBREVIATIONS

DEFAULT_OCCURRENCES = 10
MAX_OCCURRENCES = 52

_WEEKDAYS: dict[str, weekday] = dict(zip(DAY_ABBREVIATIONS, (MO, TU, WE, TH, FR, SA, SU), strict=True))


@dataclass(slots=True)
class RecurrencePattern:
    frequency: Literal["daily", "weekly"] = "weekly"
    interval: int = 1
    count: int | None = None
    end_date: date | None = None
    days_of_week: list[str] = field(default_factory=list)


def expand_occurrences(pattern: RecurrencePattern, first_start: datetime) -> list[datetime]:
    """
    Start instants of every occurrence, beginning with `first_start`'s series.

    Weekly patterns without explicit days repeat on `first_start`'s weekday.
    Without count or end date the series stops after DEFAULT_OCCURRENCES.
    """
    if pattern.interval < 1:
        raise BookingValidationError("Recurrence interval must be at least 1")
    if pattern.count is not None and pattern.count < 1:
        raise BookingValidationError("Recurrence count must be at least 1")

    unknown = [d for d in pattern.days_of_week if d not in _WEEKDAYS]
    if unknown:
        raise BookingValidationError(f"Unknown weekday(s): {', '.join(unknown)}")

    count = pattern.count
    until = None
    if pattern.end_date is not None:
        if pattern.end_date < first_start.date():
            raise BookingValidationError("Recurrence end date is before the first occurrence")
        until = datetime.combine(pattern.end_date, time.max, tzinfo=first_start.tzinfo)
    elif count is None:
        count = DEFAULT_OCCURRENCES

    byweekday = None
    if pattern.frequency == "weekly" and pattern.days_of_week:
        byweekday = [_WEEKDAYS[d] for d in pattern.days_of_week]

    rule = rrule(
        DAILY if pattern.frequency == "daily" else WEEKLY,
        dtstart=first_start,
        interval=pattern.interval,
        count=min(count, MAX_OCCURRENCES) if count else None,
        until=until,
        byweekday=byweekday,
    )

    occurrences = []
    for start in rule:
        occurrences.append(start)
        if len(occurrences) >= MAX_OCCURRENCES:
            break
    return occurrences


def build_recurring_requests(
    pattern: RecurrencePattern,
    title: str,
    first_start: datetime,
    first_end: datetime,
    fetched_at: datetime,
) -> list[BookingRequest]:
    """One BookingRequest per occurrence, all sharing the first slot's duration."""
    if first_end <= first_start:
        raise BookingValidationError("Slot end must be after slot start")
    if first_start.tzinfo is None:
        raise BookingValidationError("slot_start must be timezone-aware")

    duration: timedelta = first_end - first_start
    return [
        BookingRequest(slot_start=start, slot_end=start + duration, title=title, fetched_at=fetched_at)
        for start in expand_occurrences(pattern, first_start)
    ]
