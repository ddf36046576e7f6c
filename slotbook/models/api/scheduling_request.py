# slotbook/models/api/scheduling_request.py
"""
Scheduling API request models.
Used by routes for input validation.
"""

from datetime import date, datetime
from typing import Annotated, Literal

from pydantic import BaseModel, Field

from slotbook.services.scheduling.slot_stats_service import SlotActivity


class FindSlotsRequest(BaseModel):
    """Request for finding bookable slots."""

    start_date: date | None = Field(default=None, description="First day to search (default: today)")
    duration_minutes: int = Field(default=30, ge=1, le=720, description="Slot length in minutes")
    horizon_days: int = Field(default=1, ge=1, description="Days to search; values above 14 are clamped")
    calendar_id: str = Field(default="primary", description="Calendar to read busy time from")
    adjacent_bucket_ids: list[str] = Field(
        default_factory=list, description="Slot buckets known to have an adjacent meeting"
    )


class BookSlotRequest(BaseModel):
    """Request for booking a previously listed slot."""

    title: str = Field(..., min_length=1, max_length=200, description="Event title")
    slot_start: datetime = Field(..., description="Slot start (timezone-aware)")
    slot_end: datetime = Field(..., description="Slot end (timezone-aware)")
    fetched_at: datetime = Field(..., description="When the slot list was produced")
    calendar_ids: list[str] | None = Field(
        default=None, description="Calendars to re-check (default: user's selected calendars)"
    )


class RecurrencePatternRequest(BaseModel):
    frequency: Literal["daily", "weekly"] = Field(default="weekly")
    interval: int = Field(default=1, ge=1, le=12)
    count: int | None = Field(default=None, ge=1, le=52)
    end_date: date | None = Field(default=None)
    days_of_week: list[Literal["mon", "tue", "wed", "thu", "fri", "sat", "sun"]] = Field(
        default_factory=list, description="Weekly days, e.g. ['mon', 'thu']"
    )


class RecurringBookingRequest(BookSlotRequest):
    """Request for booking a recurring series starting at the selected slot."""

    pattern: RecurrencePatternRequest


class LearningModeRequest(BaseModel):
    enabled: bool = Field(..., description="Whether slot ranking uses booking history")


class RecordSlotActivityRequest(BaseModel):
    """Request for recording a booking outcome against a slot bucket."""

    action: SlotActivity = Field(..., description="scheduled, completed or cancelled")
    slot_start: datetime | None = Field(default=None, description="Start of the booked slot")
    bucket_id: str | None = Field(
        default=None, pattern=r"^(mon|tue|wed|thu|fri|sat|sun)_\d{2}$", description="e.g. mon_07"
    )


class ResetSlotStatsRequest(BaseModel):
    bucket_id: str | None = Field(default=None, description="Reset one bucket; omit to reset all")


class SelectedCalendarsRequest(BaseModel):
    calendar_ids: list[str] = Field(
        ..., min_length=1, description="Calendars whose busy time blocks a booking"
    )


class ReminderPreferencesRequest(BaseModel):
    reminder_minutes: list[Annotated[int, Field(ge=0, le=40320)]] = Field(
        ..., min_length=1, max_length=5, description="Popup reminders, minutes before the event"
    )
