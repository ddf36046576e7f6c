# slotbook/models/api/scheduling_response.py
"""
Scheduling API response models.
Used by routes for output formatting.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class TimeSlotResponse(BaseModel):
    start: datetime
    end: datetime
    duration_minutes: int
    label: str = Field(default="", description="Position relative to neighbouring events")
    day_label: str = Field(..., description="Today, Tomorrow or weekday name")
    days_from_now: int
    score: int
    is_recommended: bool
    annotation: str | None = None


class SlotsResponse(BaseModel):
    slots: list[TimeSlotResponse]
    fetched_at: datetime = Field(..., description="Staleness anchor to send back when booking")
    learning_enabled: bool
    total_count: int


class TimelineSegmentResponse(BaseModel):
    start: datetime
    end: datetime
    available: bool
    label: str


class TimelineResponse(BaseModel):
    date: str
    segments: list[TimelineSegmentResponse]


class BookingErrorResponse(BaseModel):
    kind: str
    message: str
    retryable: bool


class BookingResponse(BaseModel):
    success: bool
    provider_event_id: str | None = None
    html_link: str | None = None
    sync_event_id: str | None = None
    error: BookingErrorResponse | None = None


class RecurringBookingResponse(BaseModel):
    success: bool
    count: int = Field(..., description="Occurrences booked")
    events: list[BookingResponse]
    skipped: list[dict] = Field(default_factory=list, description="Occurrences not booked and why")


class SyncEventResponse(BaseModel):
    id: str
    title: str
    start_time: datetime
    end_time: datetime
    status: str
    provider_event_id: str | None = None
    html_link: str | None = None
    error_message: str | None = None
    error_kind: str | None = None
    retry_count: int
    created_at: datetime
    updated_at: datetime


class SyncEventsResponse(BaseModel):
    events: list[SyncEventResponse]
    total_count: int


class SyncStatusResponse(BaseModel):
    pending: int
    synced: int
    error: int
    conflict: int
    total: int
    last_synced_at: str | None = None


class SlotStatResponse(BaseModel):
    bucket_id: str
    total_scheduled: int
    total_completed: int
    total_cancelled: int
    success_rate: int
    last_used: datetime | None = None


class LearningModeResponse(BaseModel):
    enabled: bool


class MessageResponse(BaseModel):
    success: bool
    message: str


class CalendarResponse(BaseModel):
    id: str
    summary: str
    primary: bool
    selected: bool = Field(..., description="Checked for conflicts when booking")
    can_create_events: bool
    background_color: str | None = None


class SelectedCalendarsResponse(BaseModel):
    success: bool
    selected_calendars: list[str]


class ReminderPreferencesResponse(BaseModel):
    success: bool
    reminder_minutes: list[int]
