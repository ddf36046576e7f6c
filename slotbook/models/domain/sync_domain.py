# slotbook/models/domain/sync_domain.py
"""
Sync Event Domain Model
One row of the reliability ledger: a single booking attempt and its
lifecycle status.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel


class SyncStatus(StrEnum):
    PENDING = "pending"
    SYNCED = "synced"
    ERROR = "error"
    CONFLICT = "conflict"


# Explicit retry is the only way back out of ERROR.
ALLOWED_TRANSITIONS: dict[SyncStatus, frozenset[SyncStatus]] = {
    SyncStatus.PENDING: frozenset({SyncStatus.SYNCED, SyncStatus.ERROR, SyncStatus.CONFLICT}),
    SyncStatus.ERROR: frozenset({SyncStatus.PENDING}),
    SyncStatus.SYNCED: frozenset(),
    SyncStatus.CONFLICT: frozenset(),
}


class InvalidTransition(Exception):
    """Raised when a ledger row is asked to move along an edge the lifecycle forbids."""

    def __init__(self, event_id: str, current: SyncStatus, target: SyncStatus):
        super().__init__(f"Sync event {event_id} cannot move from {current} to {target}")
        self.event_id = event_id
        self.current = current
        self.target = target


class SyncEvent(BaseModel):
    """Domain model for a booking attempt recorded in the ledger."""

    id: str
    user_id: str
    title: str
    start_time: datetime
    end_time: datetime
    status: SyncStatus = SyncStatus.PENDING
    provider_event_id: str | None = None
    html_link: str | None = None
    error_message: str | None = None
    error_kind: str | None = None
    retry_count: int = 0
    created_at: datetime
    updated_at: datetime

    def can_transition_to(self, target: SyncStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self.status]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "status": self.status.value,
            "provider_event_id": self.provider_event_id,
            "html_link": self.html_link,
            "error_message": self.error_message,
            "error_kind": self.error_kind,
            "retry_count": self.retry_count,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }
