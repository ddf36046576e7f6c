from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from slotbook.models.domain.scheduling_domain import BookingRequest
from slotbook.models.domain.sync_domain import SyncStatus
from slotbook.services.calendar.google_client import GoogleCalendarError
from slotbook.services.scheduling.booking_validator import BookingValidator
from slotbook.services.scheduling.commit_coordinator import CommitCoordinator
from slotbook.services.scheduling.errors import RESELECT_MESSAGE
from slotbook.services.scheduling.reliability_ledger import ReliabilityLedger
from slotbook.services.scheduling.slot_stats_service import SlotStatsService
from tests.fakes import free_busy

USER = "user-123"
NOW = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)
START = datetime(2026, 3, 2, 10, 0, tzinfo=UTC)


def booking(start=START, minutes=30, title="Dentist", fetched_at=None) -> BookingRequest:
    return BookingRequest(
        slot_start=start,
        slot_end=start + timedelta(minutes=minutes),
        title=title,
        fetched_at=fetched_at or NOW - timedelta(seconds=30),
    )


@pytest.fixture
def ledger(sync_repository):
    return ReliabilityLedger(sync_repository)


@pytest.fixture
def coordinator(ledger, calendar, tokens, stats_repository, preferences):
    return CommitCoordinator(
        ledger,
        calendar_service=calendar,
        validator=BookingValidator(calendar, staleness_window_seconds=300),
        token_service=tokens,
        stats_service=SlotStatsService(stats_repository, preferences, ZoneInfo("UTC")),
        preferences_repository=preferences,
    )


@pytest.mark.asyncio
async def test_successful_booking_syncs_row_and_records_stat(
    coordinator, ledger, calendar, credential, stats_repository
):
    result = await coordinator.book_slot(credential, booking(), now=NOW)

    assert result.success is True
    assert result.provider_event_id == "gcal-1"
    row = await ledger.get(result.sync_event_id)
    assert row.status == SyncStatus.SYNCED
    assert row.provider_event_id == "gcal-1"
    assert calendar.call_names() == ["free_busy", "create_event"]
    assert (await stats_repository.get(USER, "mon_10")).total_scheduled == 1


@pytest.mark.asyncio
async def test_unauthorized_create_refreshes_once_and_retries(coordinator, calendar, credential, tokens):
    calendar.create_results.append(GoogleCalendarError("expired", status_code=401))

    result = await coordinator.book_slot(credential, booking(), now=NOW)

    assert result.success is True
    assert tokens.refresh_count == 1
    assert calendar.calls == [
        ("free_busy", "stale-token"),
        ("create_event", "stale-token"),
        ("create_event", "fresh-token-1"),
    ]


@pytest.mark.asyncio
async def test_second_unauthorized_is_terminal(coordinator, ledger, calendar, credential, tokens):
    calendar.create_results.extend(
        [
            GoogleCalendarError("expired", status_code=401),
            GoogleCalendarError("still expired", status_code=401),
        ]
    )

    result = await coordinator.book_slot(credential, booking(), now=NOW)

    assert result.success is False
    assert result.error_kind == "auth_expired"
    assert tokens.refresh_count == 1
    assert calendar.call_names().count("create_event") == 2
    row = await ledger.get(result.sync_event_id)
    assert row.status == SyncStatus.ERROR
    assert row.error_kind == "auth_expired"


@pytest.mark.asyncio
async def test_refresh_budget_is_shared_by_validate_and_create(coordinator, calendar, credential, tokens):
    calendar.free_busy_results.extend([GoogleCalendarError("expired", status_code=401), free_busy()])
    calendar.create_results.append(GoogleCalendarError("expired", status_code=401))

    result = await coordinator.book_slot(credential, booking(), now=NOW)

    assert result.error_kind == "auth_expired"
    assert tokens.refresh_count == 1


@pytest.mark.asyncio
async def test_failed_refresh_ends_attempt(coordinator, ledger, calendar, credential, tokens):
    tokens.fail_refresh = True
    calendar.create_results.append(GoogleCalendarError("expired", status_code=401))

    result = await coordinator.book_slot(credential, booking(), now=NOW)

    assert result.error_kind == "auth_expired"
    assert calendar.call_names() == ["free_busy", "create_event"]
    assert (await ledger.get(result.sync_event_id)).status == SyncStatus.ERROR


@pytest.mark.asyncio
async def test_provider_conflict_marks_row_conflict(coordinator, ledger, calendar, credential):
    calendar.create_results.append(GoogleCalendarError("taken", status_code=409))

    result = await coordinator.book_slot(credential, booking(), now=NOW)

    assert result.success is False
    assert result.error_kind == "conflict"
    row = await ledger.get(result.sync_event_id)
    assert row.status == SyncStatus.CONFLICT
    assert row.provider_event_id is None
    assert row.error_message == "taken"


@pytest.mark.asyncio
async def test_upstream_failure_is_retryable_and_counted(coordinator, ledger, calendar, credential):
    calendar.create_results.append(GoogleCalendarError("backend error", status_code=503))

    result = await coordinator.book_slot(credential, booking(), now=NOW)

    assert result.retryable is True
    assert result.error_kind == "upstream_unavailable"
    row = await ledger.get(result.sync_event_id)
    assert (row.status, row.retry_count) == (SyncStatus.ERROR, 1)
    assert "backend error" in row.error_message


@pytest.mark.asyncio
async def test_rate_limited_create_does_not_spend_refresh(coordinator, ledger, calendar, credential, tokens):
    calendar.create_results.append(
        GoogleCalendarError(
            "Rate Limit Exceeded",
            status_code=403,
            response_data={"error": {"errors": [{"reason": "userRateLimitExceeded"}]}},
        )
    )

    result = await coordinator.book_slot(credential, booking(), now=NOW)

    assert (result.error_kind, result.retryable) == ("upstream_unavailable", True)
    assert tokens.refresh_count == 0
    assert calendar.call_names() == ["free_busy", "create_event"]
    row = await ledger.get(result.sync_event_id)
    assert (row.status, row.retry_count) == (SyncStatus.ERROR, 1)


@pytest.mark.asyncio
async def test_timeout_is_classified(coordinator, calendar, credential):
    calendar.create_results.append(GoogleCalendarError("timed out", error_code="timeout"))

    result = await coordinator.book_slot(credential, booking(), now=NOW)

    assert (result.error_kind, result.retryable) == ("timeout", True)


@pytest.mark.asyncio
async def test_stale_request_never_reaches_provider(coordinator, ledger, calendar, credential):
    request = booking(fetched_at=NOW - timedelta(minutes=6))

    result = await coordinator.book_slot(credential, request, now=NOW)

    assert result.error_kind == "stale_slot"
    assert result.error_message == RESELECT_MESSAGE
    assert calendar.calls == []
    row = await ledger.get(result.sync_event_id)
    assert (row.status, row.retry_count) == (SyncStatus.ERROR, 0)


@pytest.mark.asyncio
async def test_busy_slot_is_not_created(coordinator, ledger, calendar, credential):
    calendar.free_busy_results.append(free_busy(("2026-03-02T09:45:00Z", "2026-03-02T10:15:00Z")))

    result = await coordinator.book_slot(credential, booking(), now=NOW)

    assert result.error_kind == "slot_conflict"
    assert result.retryable is False
    assert "create_event" not in calendar.call_names()
    assert (await ledger.get(result.sync_event_id)).status == SyncStatus.ERROR


@pytest.mark.asyncio
async def test_malformed_request_leaves_no_ledger_row(coordinator, sync_repository, calendar, credential):
    result = await coordinator.book_slot(credential, booking(title="   "), now=NOW)
    inverted = await coordinator.book_slot(credential, booking(minutes=-30), now=NOW)

    assert result.error_kind == "validation_error"
    assert inverted.error_kind == "validation_error"
    assert result.sync_event_id is None
    assert sync_repository.rows == {}
    assert calendar.calls == []


@pytest.mark.asyncio
async def test_retry_does_not_recreate_event_already_upstream(coordinator, ledger, calendar, credential):
    event = await ledger.start(USER, "Dentist", START, START + timedelta(minutes=30))
    await ledger.record_provider_event(event.id, "gcal-existing", None)

    results = await coordinator.retry_failed(credential, now=NOW)

    assert [r.status for r in results] == [SyncStatus.SYNCED]
    assert results[0].provider_event_id == "gcal-existing"
    assert "create_event" not in calendar.call_names()


@pytest.mark.asyncio
async def test_retry_redrives_failed_row(coordinator, ledger, calendar, credential):
    calendar.create_results.append(GoogleCalendarError("backend error", status_code=500))
    failed = await coordinator.book_slot(credential, booking(), now=NOW)

    results = await coordinator.retry_failed(credential, now=NOW)

    assert [r.id for r in results] == [failed.sync_event_id]
    assert results[0].status == SyncStatus.SYNCED
    assert results[0].retry_count == 1
    assert calendar.call_names() == ["free_busy", "create_event", "free_busy", "create_event"]


@pytest.mark.asyncio
async def test_retry_skips_input_failures(coordinator, calendar, credential):
    await coordinator.book_slot(credential, booking(fetched_at=NOW - timedelta(hours=1)), now=NOW)

    assert await coordinator.retry_failed(credential, now=NOW) == []


@pytest.mark.asyncio
async def test_recurring_booking_skips_conflicting_occurrence(coordinator, ledger, calendar, credential):
    requests = [booking(start=START + timedelta(days=7 * week)) for week in range(3)]
    calendar.free_busy_results.extend(
        [
            free_busy(),
            free_busy(("2026-03-09T10:00:00Z", "2026-03-09T11:00:00Z")),
            free_busy(),
        ]
    )

    result = await coordinator.book_recurring(credential, requests, now=NOW)

    assert result.success is True
    assert result.count() == 2
    assert [req.slot_start for req, _ in result.skipped] == [START + timedelta(days=7)]
    assert result.skipped[0][1].error_kind == "slot_conflict"
    assert len(await ledger.list_by_status(USER)) == 3
