"""In-memory stand-ins for the calendar provider, token service and repositories."""

from collections import deque
from datetime import UTC, datetime
from itertools import count
from zoneinfo import ZoneInfo

from slotbook.models.domain.calendar_domain import (
    CalendarCredential,
    CalendarInfo,
    CreatedEvent,
    FreeBusyResponse,
    ProviderEvent,
)
from slotbook.models.domain.scheduling_domain import SlotStat
from slotbook.models.domain.sync_domain import SyncEvent, SyncStatus
from slotbook.repositories.preferences_repository import SchedulingPreferences
from slotbook.services.scheduling.availability_solver import AvailabilitySolver
from slotbook.services.scheduling.booking_validator import BookingValidator
from slotbook.services.scheduling.busy_intervals import BusyIntervalExtractor
from slotbook.services.scheduling.commit_coordinator import CommitCoordinator
from slotbook.services.scheduling.engine import SchedulingEngine
from slotbook.services.scheduling.reliability_ledger import ReliabilityLedger
from slotbook.services.scheduling.slot_scorer import SlotScorer
from slotbook.services.scheduling.slot_stats_service import SlotStatsService, success_rate_for
from slotbook.services.token_service import TokenServiceError


def make_event(summary: str, start: str, end: str, **extra) -> ProviderEvent:
    return ProviderEvent.model_validate(
        {"summary": summary, "start": {"dateTime": start}, "end": {"dateTime": end}, **extra}
    )


def free_busy(*periods: tuple[str, str], calendar_id: str = "primary") -> FreeBusyResponse:
    return FreeBusyResponse.model_validate(
        {"calendars": {calendar_id: {"busy": [{"start": s, "end": e} for s, e in periods]}}}
    )


class FakeCalendarService:
    """Scripted stand-in for GoogleCalendarService; queued exceptions are raised."""

    def __init__(self):
        self.events: dict[str, list[ProviderEvent]] = {}
        self.list_errors: deque = deque()
        self.free_busy_results: deque = deque()
        self.create_results: deque = deque()
        self.calendars: list[CalendarInfo] = [
            CalendarInfo(id="primary", summary="Personal", primary=True, accessRole="owner")
        ]
        self.checked_calendars: list[list[str] | None] = []
        self.reminders: list[list[int] | None] = []
        self.calls: list[tuple[str, str]] = []
        self._ids = count(1)

    async def list_calendars(self, access_token):
        self.calls.append(("list_calendars", access_token))
        if self.list_errors:
            raise self.list_errors.popleft()
        return list(self.calendars)

    async def list_events(self, access_token, time_min, time_max, calendar_id="primary", max_results=250):
        self.calls.append(("list_events", access_token))
        if self.list_errors:
            raise self.list_errors.popleft()
        return list(self.events.get(time_min.date().isoformat(), []))

    async def free_busy(self, access_token, start_time, end_time, calendar_ids=None):
        self.calls.append(("free_busy", access_token))
        self.checked_calendars.append(calendar_ids)
        result = self.free_busy_results.popleft() if self.free_busy_results else FreeBusyResponse()
        if isinstance(result, Exception):
            raise result
        return result

    async def create_event(self, access_token, summary, start_time, end_time, reminder_minutes=None, **kwargs):
        self.calls.append(("create_event", access_token))
        self.reminders.append(reminder_minutes)
        if self.create_results:
            result = self.create_results.popleft()
            if isinstance(result, Exception):
                raise result
            return result
        event_id = f"gcal-{next(self._ids)}"
        return CreatedEvent(id=event_id, htmlLink=f"https://calendar.google.com/event?eid={event_id}")

    def call_names(self) -> list[str]:
        return [name for name, _ in self.calls]


class InMemorySyncEventRepository:
    def __init__(self):
        self.rows: dict[str, SyncEvent] = {}
        self._ids = count(1)
        self.clock = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

    async def create(self, user_id, title, start_time, end_time):
        event = SyncEvent(
            id=f"sync-{next(self._ids)}",
            user_id=user_id,
            title=title,
            start_time=start_time,
            end_time=end_time,
            created_at=self.clock,
            updated_at=self.clock,
        )
        self.rows[event.id] = event
        return event.model_copy()

    async def get(self, event_id):
        event = self.rows.get(event_id)
        return event.model_copy() if event else None

    async def update_status(
        self, event_id, expected, target, *, error_message=None, error_kind=None, increment_retry=False
    ):
        event = self.rows.get(event_id)
        if event is None or event.status != expected:
            return None
        keep_error = target == SyncStatus.ERROR
        keep_message = target in (SyncStatus.ERROR, SyncStatus.CONFLICT)
        event.status = target
        event.error_message = error_message[:500] if keep_message and error_message else None
        event.error_kind = error_kind if keep_error else None
        event.retry_count += 1 if increment_retry else 0
        event.updated_at = self.clock
        return event.model_copy()

    async def set_provider_event(self, event_id, provider_event_id, html_link):
        event = self.rows.get(event_id)
        if event is None:
            return None
        event.provider_event_id = provider_event_id
        event.html_link = html_link
        return event.model_copy()

    async def list_for_user(self, user_id, status=None, limit=100):
        rows = [
            e.model_copy()
            for e in self.rows.values()
            if e.user_id == user_id and (status is None or e.status == status)
        ]
        return rows[:limit]

    async def count_by_status(self, user_id):
        counts: dict[str, int] = {}
        for event in self.rows.values():
            if event.user_id == user_id:
                counts[event.status.value] = counts.get(event.status.value, 0) + 1
        return counts

    async def last_synced_at(self, user_id):
        synced = [
            e.updated_at
            for e in self.rows.values()
            if e.user_id == user_id and e.status == SyncStatus.SYNCED
        ]
        return max(synced) if synced else None

    async def users_with_status(self, statuses):
        return sorted({e.user_id for e in self.rows.values() if e.status in statuses})

    async def delete(self, event_id, user_id):
        event = self.rows.get(event_id)
        if event is None or event.user_id != user_id:
            return False
        del self.rows[event_id]
        return True


class InMemorySlotStatsRepository:
    def __init__(self):
        self.stats: dict[tuple[str, str], SlotStat] = {}

    def seed(self, user_id, bucket_id, scheduled, cancelled, success_rate, completed=0):
        self.stats[(user_id, bucket_id)] = SlotStat(
            user_id=user_id,
            bucket_id=bucket_id,
            total_scheduled=scheduled,
            total_completed=completed,
            total_cancelled=cancelled,
            success_rate=success_rate,
        )

    async def get(self, user_id, bucket_id):
        return self.stats.get((user_id, bucket_id))

    async def get_many(self, user_id, bucket_ids):
        return {b: self.stats[(user_id, b)] for b in bucket_ids if (user_id, b) in self.stats}

    async def list_for_user(self, user_id):
        return [s for (uid, _), s in self.stats.items() if uid == user_id]

    async def increment(self, delta):
        stat = self.stats.get((delta.user_id, delta.bucket_id))
        if stat is None:
            self.stats[(delta.user_id, delta.bucket_id)] = delta
            return delta
        stat.total_scheduled += delta.total_scheduled
        stat.total_completed += delta.total_completed
        stat.total_cancelled += delta.total_cancelled
        if stat.total_scheduled > 0:
            stat.success_rate = success_rate_for(stat.total_scheduled, stat.total_cancelled)
        stat.last_used = delta.last_used
        return stat

    async def delete_all(self, user_id):
        keys = [k for k in self.stats if k[0] == user_id]
        for key in keys:
            del self.stats[key]
        return len(keys)

    async def delete_bucket(self, user_id, bucket_id):
        return 1 if self.stats.pop((user_id, bucket_id), None) else 0


class FakePreferencesRepository:
    def __init__(self, learning_enabled: bool = True):
        self.prefs: dict[str, SchedulingPreferences] = {}
        self.default_learning = learning_enabled

    async def get(self, user_id):
        return self.prefs.get(user_id) or SchedulingPreferences(learning_enabled=self.default_learning)

    async def get_learning_enabled(self, user_id):
        return (await self.get(user_id)).learning_enabled

    async def set_learning_enabled(self, user_id, enabled):
        prefs = await self.get(user_id)
        prefs.learning_enabled = enabled
        self.prefs[user_id] = prefs

    async def set_selected_calendars(self, user_id, calendar_ids):
        prefs = await self.get(user_id)
        prefs.selected_calendars = list(calendar_ids)
        self.prefs[user_id] = prefs

    async def set_reminder_minutes(self, user_id, reminder_minutes):
        prefs = await self.get(user_id)
        prefs.reminder_minutes = list(reminder_minutes)
        self.prefs[user_id] = prefs


class FakeTokenService:
    def __init__(self, credential: CalendarCredential | None = None):
        self.credential = credential
        self.refresh_count = 0
        self.fail_refresh = False

    async def get_credential(self, user_id, provider="google"):
        return self.credential

    async def refresh_credential(self, credential):
        self.refresh_count += 1
        if self.fail_refresh:
            raise TokenServiceError("refresh rejected", user_id=credential.user_id, recoverable=False)
        return credential.model_copy(update={"access_token": f"fresh-token-{self.refresh_count}"})


def build_engine(calendar, sync_repository, stats_repository, preferences, tokens, tz=None):
    """SchedulingEngine wired entirely from in-memory collaborators."""
    tz = tz or ZoneInfo("UTC")
    ledger = ReliabilityLedger(sync_repository)
    stats = SlotStatsService(stats_repository, preferences, tz)
    return SchedulingEngine(
        solver=AvailabilitySolver(BusyIntervalExtractor(calendar, tz, 6, 22), tz),
        scorer=SlotScorer(stats_repository, tz),
        stats=stats,
        ledger=ledger,
        coordinator=CommitCoordinator(
            ledger,
            calendar_service=calendar,
            validator=BookingValidator(calendar),
            token_service=tokens,
            stats_service=stats,
            preferences_repository=preferences,
        ),
        preferences=preferences,
        tokens=tokens,
        calendar=calendar,
    )
