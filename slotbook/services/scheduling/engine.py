"""
Wiring for the scheduling components.
Routes and background jobs share one engine built from the default
repositories and provider clients.
"""

from dataclasses import dataclass
from functools import lru_cache

from slotbook.repositories.preferences_repository import PreferencesRepository
from slotbook.repositories.slot_stats_repository import SlotStatsRepository
from slotbook.repositories.sync_event_repository import SyncEventRepository
from slotbook.services.calendar.google_client import GoogleCalendarService, google_calendar_service
from slotbook.services.scheduling.availability_solver import AvailabilitySolver
from slotbook.services.scheduling.booking_validator import BookingValidator
from slotbook.services.scheduling.busy_intervals import BusyIntervalExtractor
from slotbook.services.scheduling.commit_coordinator import CommitCoordinator
from slotbook.services.scheduling.reliability_ledger import ReliabilityLedger
from slotbook.services.scheduling.slot_scorer import SlotScorer
from slotbook.services.scheduling.slot_stats_service import SlotStatsService
from slotbook.services.token_service import TokenService, token_service


@dataclass(slots=True)
class SchedulingEngine:
    solver: AvailabilitySolver
    scorer: SlotScorer
    stats: SlotStatsService
    ledger: ReliabilityLedger
    coordinator: CommitCoordinator
    preferences: PreferencesRepository
    tokens: TokenService
    calendar: GoogleCalendarService


@lru_cache(maxsize=1)
def get_engine() -> SchedulingEngine:
    preferences = PreferencesRepository()
    stats_repository = SlotStatsRepository()
    stats = SlotStatsService(stats_repository, preferences)
    ledger = ReliabilityLedger(SyncEventRepository())

    return SchedulingEngine(
        solver=AvailabilitySolver(BusyIntervalExtractor(google_calendar_service)),
        scorer=SlotScorer(stats_repository),
        stats=stats,
        ledger=ledger,
        coordinator=CommitCoordinator(
            ledger,
            calendar_service=google_calendar_service,
            validator=BookingValidator(google_calendar_service),
            token_service=token_service,
            stats_service=stats,
            preferences_repository=preferences,
        ),
        preferences=preferences,
        tokens=token_service,
        calendar=google_calendar_service,
    )
