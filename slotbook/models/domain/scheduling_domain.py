# slotbook/models/domain/scheduling_domain.py
"""
Scheduling Domain Models
Busy intervals, candidate slots, per-bucket statistics and booking requests
used by the availability solver, slot scorer and commit coordinator.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

NEUTRAL_SCORE = 5


@dataclass(slots=True)
class BusyInterval:
    start: datetime
    end: datetime
    label: str = "Busy"

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and self.end > start


@dataclass(slots=True)
class TimeSlot:
    start: datetime
    end: datetime
    duration_minutes: int
    label: str = ""
    day_label: str = "Today"
    days_from_now: int = 0
    score: int = NEUTRAL_SCORE
    is_recommended: bool = False
    annotation: str | None = None

    def add_annotation(self, note: str) -> None:
        self.annotation = f"{self.annotation}; {note}" if self.annotation else note

    def to_dict(self) -> dict[str, Any]:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "duration_minutes": self.duration_minutes,
            "label": self.label,
            "day_label": self.day_label,
            "days_from_now": self.days_from_now,
            "score": self.score,
            "is_recommended": self.is_recommended,
            "annotation": self.annotation,
        }


@dataclass(slots=True)
class TimelineSegment:
    start: datetime
    end: datetime
    available: bool
    label: str


@dataclass(slots=True)
class SlotStat:
    """Historical outcomes for one (user, weekday, hour) bucket."""

    user_id: str
    bucket_id: str
    total_scheduled: int = 0
    total_completed: int = 0
    total_cancelled: int = 0
    success_rate: int = 0
    last_used: datetime | None = None

    @classmethod
    def empty(cls, user_id: str, bucket_id: str) -> "SlotStat":
        return cls(user_id=user_id, bucket_id=bucket_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "bucket_id": self.bucket_id,
            "total_scheduled": self.total_scheduled,
            "total_completed": self.total_completed,
            "total_cancelled": self.total_cancelled,
            "success_rate": self.success_rate,
            "last_used": self.last_used.isoformat() if self.last_used else None,
        }


@dataclass(slots=True)
class BookingRequest:
    slot_start: datetime
    slot_end: datetime
    title: str
    fetched_at: datetime

    def duration_minutes(self) -> int:
        return int((self.slot_end - self.slot_start).total_seconds() // 60)


@dataclass(slots=True)
class BookingResult:
    success: bool
    provider_event_id: str | None = None
    html_link: str | None = None
    sync_event_id: str | None = None
    error_kind: str | None = None
    error_message: str | None = None
    retryable: bool = False

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success}
        if self.provider_event_id:
            data["provider_event_id"] = self.provider_event_id
            data["html_link"] = self.html_link
        if self.sync_event_id:
            data["sync_event_id"] = self.sync_event_id
        if not self.success:
            data["error"] = {
                "kind": self.error_kind,
                "message": self.error_message,
                "retryable": self.retryable,
            }
        return data


@dataclass(slots=True)
class RecurringBookingResult:
    booked: list[BookingResult] = field(default_factory=list)
    skipped: list[tuple[BookingRequest, BookingResult]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.booked)

    def count(self) -> int:
        return len(self.booked)
