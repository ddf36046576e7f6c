# slotbook/models/domain/calendar_domain.py
"""
Calendar Domain Models
Validated shapes of the calendar provider's responses.
Every payload coming back from Google Calendar is parsed into one of these
models at the client boundary; unknown shapes are rejected there.
"""

from datetime import date, datetime, time
from typing import Any, Literal
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field, model_validator


class EventTime(BaseModel):
    """Start or end of a provider event (timed or all-day)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    date_time: datetime | None = Field(default=None, alias="dateTime")
    all_day_date: date | None = Field(default=None, alias="date")
    time_zone: str | None = Field(default=None, alias="timeZone")

    @model_validator(mode="after")
    def _require_one_form(self) -> "EventTime":
        if self.date_time is None and self.all_day_date is None:
            raise ValueError("event time needs either dateTime or date")
        return self

    def is_all_day(self) -> bool:
        return self.date_time is None

    def resolve(self, tz: ZoneInfo) -> datetime:
        """Absolute instant; all-day dates resolve to local midnight in tz."""
        if self.date_time is not None:
            if self.date_time.tzinfo is None:
                return self.date_time.replace(tzinfo=tz)
            return self.date_time
        return datetime.combine(self.all_day_date, time.min, tzinfo=tz)


class ProviderEvent(BaseModel):
    """Domain model for a calendar event as listed by the provider."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str | None = None
    summary: str = ""
    status: str = "confirmed"
    transparency: Literal["opaque", "transparent"] = "opaque"
    start: EventTime
    end: EventTime
    html_link: str | None = Field(default=None, alias="htmlLink")

    def is_busy(self) -> bool:
        """Check if this event blocks availability."""
        return self.transparency != "transparent" and self.status != "cancelled"

    def is_all_day(self) -> bool:
        return self.start.is_all_day()

    def display_name(self) -> str:
        return self.summary or "Busy"


class EventsPage(BaseModel):
    """One page of an events.list response."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    items: list[ProviderEvent] = Field(default_factory=list)
    next_page_token: str | None = Field(default=None, alias="nextPageToken")


class BusyPeriod(BaseModel):
    start: datetime
    end: datetime

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and self.end > start


class CalendarFreeBusy(BaseModel):
    model_config = ConfigDict(extra="ignore")

    busy: list[BusyPeriod] = Field(default_factory=list)
    errors: list[dict[str, Any]] = Field(default_factory=list)


class FreeBusyResponse(BaseModel):
    """Free/busy answer keyed by calendar id."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    time_min: datetime | None = Field(default=None, alias="timeMin")
    time_max: datetime | None = Field(default=None, alias="timeMax")
    calendars: dict[str, CalendarFreeBusy] = Field(default_factory=dict)

    def all_busy_periods(self) -> list[BusyPeriod]:
        periods: list[BusyPeriod] = []
        for calendar in self.calendars.values():
            periods.extend(calendar.busy)
        return sorted(periods, key=lambda p: p.start)

    def calendars_with_errors(self) -> dict[str, list[dict[str, Any]]]:
        return {cal_id: cal.errors for cal_id, cal in self.calendars.items() if cal.errors}


class CreatedEvent(BaseModel):
    """Provider acknowledgement of an inserted event."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1)
    html_link: str | None = Field(default=None, alias="htmlLink")
    status: str = "confirmed"


class CalendarInfo(BaseModel):
    """Calendar the user can see, from the calendar list."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str = Field(..., min_length=1)
    summary: str = ""
    primary: bool = False
    access_role: str = Field(default="reader", alias="accessRole")
    background_color: str | None = Field(default=None, alias="backgroundColor")

    def can_create_events(self) -> bool:
        return self.access_role in ("owner", "writer")


class CalendarListPage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    items: list[CalendarInfo] = Field(default_factory=list)
    next_page_token: str | None = Field(default=None, alias="nextPageToken")


class CalendarCredential(BaseModel):
    """OAuth access/refresh pair handed to the engine for one user."""

    user_id: str
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime | None = None

    def can_refresh(self) -> bool:
        return bool(self.refresh_token)
