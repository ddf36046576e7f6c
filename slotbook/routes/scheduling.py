"""
Scheduling API Routes
HTTP endpoints for slot search, booking, the booking ledger and learning mode.
"""

from datetime import UTC, date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status

from slotbook.auth.verify import auth_dependency
from slotbook.db.helpers import DatabaseError
from slotbook.infrastructure.observability.logging import bind_log_context, get_logger
from slotbook.models.api.scheduling_request import (
    BookSlotRequest,
    FindSlotsRequest,
    LearningModeRequest,
    RecordSlotActivityRequest,
    RecurringBookingRequest,
    ReminderPreferencesRequest,
    ResetSlotStatsRequest,
    SelectedCalendarsRequest,
)
from slotbook.models.api.scheduling_response import (
    BookingErrorResponse,
    BookingResponse,
    CalendarResponse,
    LearningModeResponse,
    MessageResponse,
    RecurringBookingResponse,
    ReminderPreferencesResponse,
    SelectedCalendarsResponse,
    SlotsResponse,
    SlotStatResponse,
    SyncEventResponse,
    SyncEventsResponse,
    SyncStatusResponse,
    TimelineResponse,
    TimelineSegmentResponse,
    TimeSlotResponse,
)
from slotbook.models.domain.calendar_domain import CalendarCredential
from slotbook.models.domain.scheduling_domain import BookingRequest, BookingResult
from slotbook.models.domain.sync_domain import SyncStatus
from slotbook.services.calendar.google_client import GoogleCalendarError
from slotbook.services.scheduling.engine import SchedulingEngine, get_engine
from slotbook.services.scheduling.errors import BookingError, translate_calendar_error
from slotbook.services.scheduling.recurrence import RecurrencePattern, build_recurring_requests
from slotbook.services.token_service import TokenServiceError

logger = get_logger(__name__)

router = APIRouter(prefix="/scheduling", tags=["scheduling"])

ERROR_STATUS = {
    "stale_slot": status.HTTP_409_CONFLICT,
    "slot_conflict": status.HTTP_409_CONFLICT,
    "conflict": status.HTTP_409_CONFLICT,
    "auth_expired": status.HTTP_401_UNAUTHORIZED,
    "upstream_unavailable": status.HTTP_503_SERVICE_UNAVAILABLE,
    "timeout": status.HTTP_503_SERVICE_UNAVAILABLE,
    "upstream_rejected": status.HTTP_502_BAD_GATEWAY,
    "validation_error": status.HTTP_422_UNPROCESSABLE_ENTITY,
}


def _user_id(claims: dict) -> str:
    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    bind_log_context(user_id=user_id)
    return user_id


async def _credential(engine: SchedulingEngine, user_id: str) -> CalendarCredential:
    try:
        credential = await engine.tokens.get_credential(user_id)
    except TokenServiceError as e:
        logger.error("Could not load calendar credential", user_id=user_id, error=str(e))
        if not e.recoverable:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Calendar connection is invalid. Please reconnect your account.",
            ) from e
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Calendar credentials unavailable"
        ) from e

    if credential is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Google Calendar not connected")
    return credential


def _http_error(error: BookingError) -> HTTPException:
    return HTTPException(
        status_code=ERROR_STATUS.get(error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={"kind": error.kind, "message": error.user_message, "retryable": error.retryable},
    )


def _booking_response(result: BookingResult) -> BookingResponse:
    error = None
    if not result.success:
        error = BookingErrorResponse(
            kind=result.error_kind or "booking_error",
            message=result.error_message or "",
            retryable=result.retryable,
        )
    return BookingResponse(
        success=result.success,
        provider_event_id=result.provider_event_id,
        html_link=result.html_link,
        sync_event_id=result.sync_event_id,
        error=error,
    )


@router.post("/slots", response_model=SlotsResponse)
async def find_slots(
    request: FindSlotsRequest,
    claims: dict = Depends(auth_dependency),
    engine: SchedulingEngine = Depends(get_engine),
):
    """Find and rank bookable slots."""
    user_id = _user_id(claims)
    credential = await _credential(engine, user_id)

    now = datetime.now(UTC)
    start_date = request.start_date or now.astimezone(engine.solver.tz).date()

    try:
        slots = await engine.solver.find_available_slots(
            credential,
            start_date,
            request.duration_minutes,
            request.horizon_days,
            now=now,
            calendar_id=request.calendar_id,
        )
        learning_enabled = await engine.stats.learning_enabled(user_id)
        ranked = await engine.scorer.rank_slots(
            user_id, slots, learning_enabled, request.adjacent_bucket_ids
        )
    except BookingError as e:
        logger.warning("Slot search failed", user_id=user_id, error_kind=e.kind)
        raise _http_error(e) from e
    except DatabaseError as e:
        logger.error("Database error during slot search", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to find slots"
        ) from e

    return SlotsResponse(
        slots=[TimeSlotResponse(**slot.to_dict()) for slot in ranked],
        fetched_at=now,
        learning_enabled=learning_enabled,
        total_count=len(ranked),
    )


@router.get("/timeline", response_model=TimelineResponse)
async def get_timeline(
    day: date | None = Query(default=None, description="Day to show (default: today)"),
    calendar_id: str = Query(default="primary"),
    claims: dict = Depends(auth_dependency),
    engine: SchedulingEngine = Depends(get_engine),
):
    """Free/busy segments across the working window of one day."""
    user_id = _user_id(claims)
    credential = await _credential(engine, user_id)
    day = day or datetime.now(UTC).astimezone(engine.solver.tz).date()

    try:
        segments = await engine.solver.timeline(credential, day, calendar_id)
    except BookingError as e:
        raise _http_error(e) from e

    return TimelineResponse(
        date=day.isoformat(),
        segments=[
            TimelineSegmentResponse(start=s.start, end=s.end, available=s.available, label=s.label)
            for s in segments
        ],
    )


@router.post("/bookings", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def book_slot(
    request: BookSlotRequest,
    claims: dict = Depends(auth_dependency),
    engine: SchedulingEngine = Depends(get_engine),
):
    """Book a previously listed slot."""
    user_id = _user_id(claims)
    credential = await _credential(engine, user_id)

    booking = BookingRequest(
        slot_start=request.slot_start,
        slot_end=request.slot_end,
        title=request.title,
        fetched_at=request.fetched_at,
    )

    try:
        result = await engine.coordinator.book_slot(credential, booking, request.calendar_ids)
    except DatabaseError as e:
        logger.error("Could not record booking attempt", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to book slot"
        ) from e

    if not result.success:
        raise HTTPException(
            status_code=ERROR_STATUS.get(result.error_kind, status.HTTP_500_INTERNAL_SERVER_ERROR),
            detail=_booking_response(result).model_dump(),
        )
    return _booking_response(result)


@router.post(
    "/bookings/recurring",
    response_model=RecurringBookingResponse,
    status_code=status.HTTP_201_CREATED,
)
async def book_recurring(
    request: RecurringBookingRequest,
    claims: dict = Depends(auth_dependency),
    engine: SchedulingEngine = Depends(get_engine),
):
    """Book a recurring series; occurrences that cannot be booked are skipped."""
    user_id = _user_id(claims)
    credential = await _credential(engine, user_id)

    pattern = RecurrencePattern(
        frequency=request.pattern.frequency,
        interval=request.pattern.interval,
        count=request.pattern.count,
        end_date=request.pattern.end_date,
        days_of_week=list(request.pattern.days_of_week),
    )

    try:
        requests = build_recurring_requests(
            pattern, request.title, request.slot_start, request.slot_end, request.fetched_at
        )
        result = await engine.coordinator.book_recurring(credential, requests, request.calendar_ids)
    except BookingError as e:
        raise _http_error(e) from e
    except DatabaseError as e:
        logger.error("Could not record recurring booking", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to book series"
        ) from e

    if not result.success:
        first_failure = result.skipped[0][1] if result.skipped else None
        raise HTTPException(
            status_code=ERROR_STATUS.get(
                first_failure.error_kind if first_failure else "", status.HTTP_409_CONFLICT
            ),
            detail="None of the occurrences could be booked",
        )

    return RecurringBookingResponse(
        success=True,
        count=result.count(),
        events=[_booking_response(r) for r in result.booked],
        skipped=[
            {
                "slot_start": req.slot_start.isoformat(),
                "kind": outcome.error_kind,
                "message": outcome.error_message,
            }
            for req, outcome in result.skipped
        ],
    )


@router.get("/sync-events", response_model=SyncEventsResponse)
async def list_sync_events(
    status_filter: SyncStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    claims: dict = Depends(auth_dependency),
    engine: SchedulingEngine = Depends(get_engine),
):
    """List booking attempts, newest first."""
    user_id = _user_id(claims)
    events = await engine.ledger.list_by_status(user_id, status_filter, limit)
    return SyncEventsResponse(
        events=[SyncEventResponse(**e.to_dict()) for e in events],
        total_count=len(events),
    )


@router.get("/sync-status", response_model=SyncStatusResponse)
async def get_sync_status(
    claims: dict = Depends(auth_dependency),
    engine: SchedulingEngine = Depends(get_engine),
):
    user_id = _user_id(claims)
    return SyncStatusResponse(**await engine.ledger.counts(user_id))


@router.post("/sync-events/retry", response_model=SyncEventsResponse)
async def retry_sync_events(
    claims: dict = Depends(auth_dependency),
    engine: SchedulingEngine = Depends(get_engine),
):
    """Retry failed and stuck booking attempts."""
    user_id = _user_id(claims)
    credential = await _credential(engine, user_id)

    events = await engine.coordinator.retry_failed(credential)
    return SyncEventsResponse(
        events=[SyncEventResponse(**e.to_dict()) for e in events],
        total_count=len(events),
    )


@router.delete("/sync-events/{event_id}", response_model=MessageResponse)
async def delete_sync_event(
    event_id: str,
    claims: dict = Depends(auth_dependency),
    engine: SchedulingEngine = Depends(get_engine),
):
    user_id = _user_id(claims)
    if not await engine.ledger.delete(event_id, user_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Sync event not found")
    return MessageResponse(success=True, message="Sync event deleted")


@router.get("/calendars", response_model=list[CalendarResponse])
async def list_calendars(
    claims: dict = Depends(auth_dependency),
    engine: SchedulingEngine = Depends(get_engine),
):
    """Calendars the user can see, marked with whether bookings check them."""
    user_id = _user_id(claims)
    credential = await _credential(engine, user_id)

    try:
        calendars = await engine.calendar.list_calendars(credential.access_token)
    except GoogleCalendarError as e:
        raise _http_error(translate_calendar_error(e)) from e

    prefs = await engine.preferences.get(user_id)
    return [
        CalendarResponse(
            id=cal.id,
            summary=cal.summary,
            primary=cal.primary,
            selected=cal.primary or cal.id in prefs.selected_calendars,
            can_create_events=cal.can_create_events(),
            background_color=cal.background_color,
        )
        for cal in calendars
    ]


@router.post("/selected-calendars", response_model=SelectedCalendarsResponse)
async def set_selected_calendars(
    request: SelectedCalendarsRequest,
    claims: dict = Depends(auth_dependency),
    engine: SchedulingEngine = Depends(get_engine),
):
    """Choose which calendars are re-checked for conflicts before booking."""
    user_id = _user_id(claims)
    calendar_ids = list(dict.fromkeys(request.calendar_ids))
    await engine.preferences.set_selected_calendars(user_id, calendar_ids)
    logger.info("Selected calendars updated", user_id=user_id, calendar_count=len(calendar_ids))
    return SelectedCalendarsResponse(success=True, selected_calendars=calendar_ids)


@router.post("/reminder-preferences", response_model=ReminderPreferencesResponse)
async def set_reminder_preferences(
    request: ReminderPreferencesRequest,
    claims: dict = Depends(auth_dependency),
    engine: SchedulingEngine = Depends(get_engine),
):
    user_id = _user_id(claims)
    await engine.preferences.set_reminder_minutes(user_id, request.reminder_minutes)
    return ReminderPreferencesResponse(success=True, reminder_minutes=request.reminder_minutes)


@router.get("/learning-mode", response_model=LearningModeResponse)
async def get_learning_mode(
    claims: dict = Depends(auth_dependency),
    engine: SchedulingEngine = Depends(get_engine),
):
    user_id = _user_id(claims)
    return LearningModeResponse(enabled=await engine.stats.learning_enabled(user_id))


@router.post("/learning-mode", response_model=LearningModeResponse)
async def set_learning_mode(
    request: LearningModeRequest,
    claims: dict = Depends(auth_dependency),
    engine: SchedulingEngine = Depends(get_engine),
):
    user_id = _user_id(claims)
    await engine.stats.set_learning_enabled(user_id, request.enabled)
    return LearningModeResponse(enabled=request.enabled)


@router.get("/slot-stats", response_model=list[SlotStatResponse])
async def list_slot_stats(
    claims: dict = Depends(auth_dependency),
    engine: SchedulingEngine = Depends(get_engine),
):
    user_id = _user_id(claims)
    stats = await engine.stats.list_stats(user_id)
    return [SlotStatResponse(**stat.to_dict()) for stat in stats]


@router.post("/slot-stats/record", response_model=MessageResponse)
async def record_slot_activity(
    request: RecordSlotActivityRequest,
    claims: dict = Depends(auth_dependency),
    engine: SchedulingEngine = Depends(get_engine),
):
    """Record a scheduled, completed or cancelled outcome for a slot bucket."""
    user_id = _user_id(claims)
    if request.slot_start is None and request.bucket_id is None:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="slot_start or bucket_id is required",
        )

    stat = await engine.stats.record_activity(
        user_id, request.action, slot_start=request.slot_start, bucket_id=request.bucket_id
    )
    if stat is None:
        return MessageResponse(success=True, message="Learning mode is disabled, not recording stats")
    return MessageResponse(
        success=True, message=f"Activity recorded: {request.action.value} for slot {stat.bucket_id}"
    )


@router.post("/slot-stats/reset", response_model=MessageResponse)
async def reset_slot_stats(
    request: ResetSlotStatsRequest,
    claims: dict = Depends(auth_dependency),
    engine: SchedulingEngine = Depends(get_engine),
):
    user_id = _user_id(claims)
    if request.bucket_id:
        if not await engine.stats.reset_bucket(user_id, request.bucket_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Slot stat not found")
        return MessageResponse(success=True, message=f"Statistics for {request.bucket_id} reset")

    await engine.stats.reset_all(user_id)
    return MessageResponse(success=True, message="All learning mode statistics have been reset")
