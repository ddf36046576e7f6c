"""
Commit Coordinator
Runs one booking attempt end to end: ledger row first, then validation,
then the provider write, translating every failure into the booking
error taxonomy and recording the outcome on the ledger row.
"""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import TypeVar

from slotbook.db.helpers import DatabaseError
from slotbook.infrastructure.observability.logging import get_logger
from slotbook.models.domain.calendar_domain import CalendarCredential, CreatedEvent
from slotbook.models.domain.scheduling_domain import (
    BookingRequest,
    BookingResult,
    RecurringBookingResult,
)
from slotbook.models.domain.sync_domain import InvalidTransition, SyncEvent, SyncStatus
from slotbook.repositories.preferences_repository import (
    PreferencesRepository,
    SchedulingPreferences,
)
from slotbook.services.calendar.google_client import (
    GoogleCalendarError,
    GoogleCalendarService,
    google_calendar_service,
)
from slotbook.services.scheduling.booking_validator import BookingValidator
from slotbook.services.scheduling.errors import (
    AuthExpired,
    BookingConflict,
    BookingError,
    BookingValidationError,
    SlotConflict,
    StaleSlot,
    translate_calendar_error,
)
from slotbook.services.scheduling.reliability_ledger import ReliabilityLedger, SyncEventNotFound
from slotbook.services.scheduling.slot_stats_service import SlotActivity, SlotStatsService
from slotbook.services.token_service import TokenService, TokenServiceError
from slotbook.services.token_service import token_service as default_token_service

logger = get_logger(__name__)

T = TypeVar("T")


class _Attempt:
    """Credential in use for one attempt plus its single-refresh budget."""

    def __init__(self, credential: CalendarCredential):
        self.credential = credential
        self.refreshed = False


def _failure(error: BookingError, sync_event_id: str | None = None) -> BookingResult:
    return BookingResult(
        success=False,
        sync_event_id=sync_event_id,
        error_kind=error.kind,
        error_message=error.user_message,
        retryable=error.retryable,
    )


def check_booking_input(request: BookingRequest) -> None:
    """Raise BookingValidationError for a request that can never be booked."""
    if not request.title or not request.title.strip():
        raise BookingValidationError("Title is required")
    for name in ("slot_start", "slot_end", "fetched_at"):
        value = getattr(request, name)
        if value.tzinfo is None or value.utcoffset() is None:
            raise BookingValidationError(f"{name} must be timezone-aware")
    if request.slot_end <= request.slot_start:
        raise BookingValidationError("Slot end must be after slot start")


class CommitCoordinator:
    """
    Books slots against the calendar provider with a durable attempt record.

    The ledger is injected so concurrent flows (for example the occurrences
    of a recurring booking) never share hidden state.
    """

    def __init__(
        self,
        ledger: ReliabilityLedger,
        calendar_service: GoogleCalendarService | None = None,
        validator: BookingValidator | None = None,
        token_service: TokenService | None = None,
        stats_service: SlotStatsService | None = None,
        preferences_repository: PreferencesRepository | None = None,
    ):
        self.ledger = ledger
        self.calendar_service = calendar_service or google_calendar_service
        self.validator = validator or BookingValidator(self.calendar_service)
        self.token_service = token_service or default_token_service
        self.preferences_repository = preferences_repository or PreferencesRepository()
        self.stats_service = stats_service or SlotStatsService(
            preferences_repository=self.preferences_repository
        )

    async def _load_preferences(self, user_id: str) -> SchedulingPreferences:
        try:
            return await self.preferences_repository.get(user_id)
        except DatabaseError as e:
            logger.warning("Using default scheduling preferences", user_id=user_id, error=str(e))
            return SchedulingPreferences()

    async def _refresh(self, attempt: _Attempt) -> None:
        try:
            attempt.credential = await self.token_service.refresh_credential(attempt.credential)
        except TokenServiceError as e:
            raise AuthExpired(f"Credential refresh failed: {e}") from e
        finally:
            attempt.refreshed = True

    async def _with_refresh(
        self, attempt: _Attempt, call: Callable[[CalendarCredential], Awaitable[T]]
    ) -> T:
        """Run `call`; on AuthExpired refresh once per attempt and repeat it once."""
        try:
            return await call(attempt.credential)
        except AuthExpired:
            if attempt.refreshed:
                raise
            logger.info("Provider rejected credential, refreshing", user_id=attempt.credential.user_id)
            await self._refresh(attempt)
            return await call(attempt.credential)

    async def _create_event(
        self,
        credential: CalendarCredential,
        title: str,
        start: datetime,
        end: datetime,
        reminder_minutes: list[int],
    ) -> CreatedEvent:
        try:
            return await self.calendar_service.create_event(
                credential.access_token, title, start, end, reminder_minutes=reminder_minutes
            )
        except GoogleCalendarError as e:
            raise translate_calendar_error(e) from e

    async def _record_failure(self, event: SyncEvent, error: BookingError) -> SyncEvent | None:
        """Move the row to conflict or error; call failures count against the retry budget."""
        try:
            if isinstance(error, BookingConflict):
                return await self.ledger.mark_conflict(event.id, str(error))
            count_attempt = not isinstance(error, (StaleSlot, SlotConflict, BookingValidationError))
            return await self.ledger.mark_error(
                event.id, error.kind, str(error), count_attempt=count_attempt
            )
        except (DatabaseError, InvalidTransition, SyncEventNotFound) as e:
            logger.error(
                "Could not record booking failure on ledger",
                sync_event_id=event.id,
                error_kind=error.kind,
                ledger_error=str(e),
            )
            return None

    async def _record_success(self, event: SyncEvent, created: CreatedEvent) -> None:
        try:
            await self.ledger.record_provider_event(event.id, created.id, created.html_link)
            await self.ledger.mark_synced(event.id)
        except (DatabaseError, InvalidTransition, SyncEventNotFound) as e:
            # The provider id (if stored) lets a later retry finish this row without a second create
            logger.error(
                "Event created but ledger update failed",
                sync_event_id=event.id,
                provider_event_id=created.id,
                error=str(e),
            )

        try:
            await self.stats_service.record_activity(
                event.user_id, SlotActivity.SCHEDULED, slot_start=event.start_time
            )
        except DatabaseError as e:
            logger.warning("Slot activity not recorded", user_id=event.user_id, error=str(e))

    async def _commit(
        self,
        attempt: _Attempt,
        event: SyncEvent,
        calendar_ids: list[str],
        reminder_minutes: list[int],
    ) -> BookingResult:
        """Free/busy check then create, for a row already in pending."""
        log = logger.bind(user_id=event.user_id, sync_event_id=event.id)

        try:
            await self._with_refresh(
                attempt,
                lambda c: self.validator.validate_availability(
                    c, event.start_time, event.end_time, calendar_ids
                ),
            )
            created = await self._with_refresh(
                attempt,
                lambda c: self._create_event(
                    c, event.title, event.start_time, event.end_time, reminder_minutes
                ),
            )
        except BookingError as e:
            log.warning("Booking attempt failed", error_kind=e.kind, retryable=e.retryable)
            await self._record_failure(event, e)
            return _failure(e, event.id)

        await self._record_success(event, created)
        log.info("Booking committed", provider_event_id=created.id)
        return BookingResult(
            success=True,
            provider_event_id=created.id,
            html_link=created.html_link,
            sync_event_id=event.id,
        )

    async def book_slot(
        self,
        credential: CalendarCredential,
        request: BookingRequest,
        calendar_ids: list[str] | None = None,
        now: datetime | None = None,
    ) -> BookingResult:
        """
        Book one slot.

        Malformed input is rejected before a ledger row exists. Every later
        outcome leaves the row in synced, error or conflict.
        """
        try:
            check_booking_input(request)
        except BookingValidationError as e:
            logger.info("Booking request rejected", user_id=credential.user_id, reason=str(e))
            return _failure(e)

        now = now or datetime.now(UTC)
        prefs = await self._load_preferences(credential.user_id)
        calendar_ids = calendar_ids or prefs.selected_calendars

        event = await self.ledger.start(
            credential.user_id, request.title.strip(), request.slot_start, request.slot_end
        )

        try:
            self.validator.check_freshness(request, now)
        except StaleSlot as e:
            await self._record_failure(event, e)
            return _failure(e, event.id)

        return await self._commit(_Attempt(credential), event, calendar_ids, prefs.reminder_minutes)

    async def retry_failed(
        self, credential: CalendarCredential, now: datetime | None = None
    ) -> list[SyncEvent]:
        """
        Re-drive retryable rows for the credential's user.

        Rows that already carry a provider event id are marked synced without
        another create call.
        """
        user_id = credential.user_id
        events = await self.ledger.retry_all(user_id, now=now)
        if not events:
            return []

        prefs = await self._load_preferences(user_id)
        results: list[SyncEvent] = []

        for event in events:
            if event.provider_event_id:
                try:
                    results.append(await self.ledger.mark_synced(event.id))
                    logger.info(
                        "Retried row already created upstream",
                        sync_event_id=event.id,
                        provider_event_id=event.provider_event_id,
                    )
                except InvalidTransition as e:
                    logger.info("Sync event no longer pending", sync_event_id=event.id, error=str(e))
                continue

            await self._commit(
                _Attempt(credential), event, prefs.selected_calendars, prefs.reminder_minutes
            )
            latest = await self.ledger.get(event.id)
            if latest is not None:
                results.append(latest)

        logger.info(
            "Retry completed",
            user_id=user_id,
            attempted=len(events),
            synced=sum(1 for e in results if e.status == SyncStatus.SYNCED),
        )
        return results

    async def book_recurring(
        self,
        credential: CalendarCredential,
        requests: list[BookingRequest],
        calendar_ids: list[str] | None = None,
        now: datetime | None = None,
    ) -> RecurringBookingResult:
        """Book each occurrence independently; failed occurrences are skipped, not fatal."""
        result = RecurringBookingResult()
        for request in requests:
            outcome = await self.book_slot(credential, request, calendar_ids, now)
            if outcome.success:
                result.booked.append(outcome)
            else:
                result.skipped.append((request, outcome))

        logger.info(
            "Recurring booking completed",
            user_id=credential.user_id,
            booked=len(result.booked),
            skipped=len(result.skipped),
        )
        return result
