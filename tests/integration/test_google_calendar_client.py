import json
import re
from datetime import UTC, datetime, timedelta

import httpx
import pytest

from slotbook.services.calendar.google_client import GoogleCalendarError, GoogleCalendarService
from slotbook.services.scheduling.errors import (
    AuthExpired,
    BookingConflict,
    UpstreamRejected,
    UpstreamTimeout,
    UpstreamUnavailable,
    translate_calendar_error,
)

EVENTS_URL = re.compile(r"https://www\.googleapis\.com/calendar/v3/calendars/primary/events(\?.*)?$")
FREEBUSY_URL = "https://www.googleapis.com/calendar/v3/freeBusy"
CALENDAR_LIST_URL = re.compile(r"https://www\.googleapis\.com/calendar/v3/users/me/calendarList(\?.*)?$")

DAY_START = datetime(2026, 3, 2, tzinfo=UTC)
DAY_END = DAY_START + timedelta(days=1)


@pytest.mark.asyncio
async def test_calendar_list_events_success(httpx_mock):
    service = GoogleCalendarService()

    httpx_mock.add_response(
        method="GET",
        url=EVENTS_URL,
        json={
            "items": [
                {
                    "id": "event-1",
                    "status": "confirmed",
                    "summary": "Standup",
                    "start": {"dateTime": "2026-03-02T10:00:00Z"},
                    "end": {"dateTime": "2026-03-02T10:30:00Z"},
                },
                {
                    "id": "event-2",
                    "summary": "Holiday",
                    "transparency": "transparent",
                    "start": {"date": "2026-03-02"},
                    "end": {"date": "2026-03-03"},
                },
            ]
        },
    )

    events = await service.list_events("token", DAY_START, DAY_END)
    await service.close()

    assert [e.id for e in events] == ["event-1", "event-2"]
    assert events[0].is_busy() is True
    assert events[1].is_busy() is False
    assert events[1].is_all_day() is True

    request = httpx_mock.get_request()
    assert request.headers["Authorization"] == "Bearer token"
    assert request.url.params["singleEvents"] == "true"
    assert request.url.params["orderBy"] == "startTime"


@pytest.mark.asyncio
async def test_calendar_list_events_follows_pages(httpx_mock):
    service = GoogleCalendarService()

    item = {
        "summary": "Block",
        "start": {"dateTime": "2026-03-02T10:00:00Z"},
        "end": {"dateTime": "2026-03-02T11:00:00Z"},
    }
    httpx_mock.add_response(method="GET", url=EVENTS_URL, json={"items": [item], "nextPageToken": "p2"})
    httpx_mock.add_response(method="GET", url=EVENTS_URL, json={"items": [item]})

    events = await service.list_events("token", DAY_START, DAY_END)
    await service.close()

    assert len(events) == 2
    second = httpx_mock.get_requests()[1]
    assert second.url.params["pageToken"] == "p2"


@pytest.mark.asyncio
async def test_calendar_list_events_rejects_unknown_shape(httpx_mock):
    service = GoogleCalendarService()

    httpx_mock.add_response(
        method="GET", url=EVENTS_URL, json={"items": [{"summary": "No times"}]}
    )

    with pytest.raises(GoogleCalendarError) as exc:
        await service.list_events("token", DAY_START, DAY_END)
    await service.close()

    assert exc.value.error_code == "invalid_response"


@pytest.mark.asyncio
async def test_calendar_list_events_error_mapping(httpx_mock):
    service = GoogleCalendarService()

    httpx_mock.add_response(
        method="GET",
        url=EVENTS_URL,
        status_code=401,
        json={"error": {"code": 401, "message": "Invalid Credentials"}},
    )

    with pytest.raises(GoogleCalendarError) as exc:
        await service.list_events("token", DAY_START, DAY_END)
    await service.close()

    assert exc.value.status_code == 401
    assert "authorization" in str(exc.value).lower()
    assert isinstance(translate_calendar_error(exc.value), AuthExpired)


@pytest.mark.asyncio
async def test_calendar_timeout_is_classified(httpx_mock):
    service = GoogleCalendarService(timeout_seconds=1)

    httpx_mock.add_exception(httpx.ReadTimeout("too slow"), url=EVENTS_URL)

    with pytest.raises(GoogleCalendarError) as exc:
        await service.list_events("token", DAY_START, DAY_END)
    await service.close()

    assert exc.value.error_code == "timeout"
    assert isinstance(translate_calendar_error(exc.value), UpstreamTimeout)


@pytest.mark.asyncio
async def test_calendar_free_busy(httpx_mock):
    service = GoogleCalendarService()

    httpx_mock.add_response(
        method="POST",
        url=FREEBUSY_URL,
        json={
            "calendars": {
                "primary": {"busy": [{"start": "2026-03-02T10:00:00Z", "end": "2026-03-02T11:00:00Z"}]},
                "team@example.com": {"errors": [{"domain": "global", "reason": "notFound"}]},
            }
        },
    )

    result = await service.free_busy("token", DAY_START, DAY_END, ["primary", "team@example.com"])
    await service.close()

    assert len(result.all_busy_periods()) == 1
    assert list(result.calendars_with_errors()) == ["team@example.com"]
    body = json.loads(httpx_mock.get_request().content)
    assert body["items"] == [{"id": "primary"}, {"id": "team@example.com"}]


@pytest.mark.asyncio
async def test_calendar_create_event(httpx_mock):
    service = GoogleCalendarService()

    httpx_mock.add_response(
        method="POST",
        url=EVENTS_URL,
        json={"id": "created-1", "htmlLink": "https://calendar.google.com/event?eid=1"},
    )

    start = datetime(2026, 3, 2, 10, 0, tzinfo=UTC)
    created = await service.create_event(
        "token", "Dentist", start, start + timedelta(minutes=30), reminder_minutes=[30, 10]
    )
    await service.close()

    assert created.id == "created-1"
    body = json.loads(httpx_mock.get_request().content)
    assert body["summary"] == "Dentist"
    assert body["colorId"] == "7"
    assert body["reminders"]["overrides"] == [
        {"method": "popup", "minutes": 30},
        {"method": "popup", "minutes": 10},
    ]


@pytest.mark.parametrize(
    ("status_code", "expected"),
    [
        (401, AuthExpired),
        (403, UpstreamRejected),
        (409, BookingConflict),
        (429, UpstreamUnavailable),
        (500, UpstreamUnavailable),
        (400, UpstreamRejected),
    ],
)
@pytest.mark.asyncio
async def test_calendar_create_event_status_translation(httpx_mock, status_code, expected):
    service = GoogleCalendarService()

    httpx_mock.add_response(
        method="POST",
        url=EVENTS_URL,
        status_code=status_code,
        json={"error": {"code": status_code, "message": "nope"}},
    )

    start = datetime(2026, 3, 2, 10, 0, tzinfo=UTC)
    with pytest.raises(GoogleCalendarError) as exc:
        await service.create_event("token", "Dentist", start, start + timedelta(minutes=30))
    await service.close()

    error = translate_calendar_error(exc.value)
    assert type(error) is expected
    assert error.retryable is (expected is UpstreamUnavailable)


@pytest.mark.asyncio
async def test_calendar_rate_limited_403_is_retryable(httpx_mock):
    service = GoogleCalendarService()

    httpx_mock.add_response(
        method="GET",
        url=EVENTS_URL,
        status_code=403,
        json={
            "error": {
                "code": 403,
                "message": "Rate Limit Exceeded",
                "errors": [{"domain": "usageLimits", "reason": "rateLimitExceeded"}],
            }
        },
    )

    with pytest.raises(GoogleCalendarError) as exc:
        await service.list_events("token", DAY_START, DAY_END)
    await service.close()

    error = translate_calendar_error(exc.value)
    assert type(error) is UpstreamUnavailable
    assert error.retryable is True


def test_forbidden_without_rate_limit_reason_is_not_auth_expired():
    error = translate_calendar_error(GoogleCalendarError("Rate Limit Exceeded", status_code=403))

    assert not isinstance(error, AuthExpired)
    assert error.kind == "upstream_rejected"


@pytest.mark.asyncio
async def test_calendar_list_calendars(httpx_mock):
    service = GoogleCalendarService()

    httpx_mock.add_response(
        method="GET",
        url=CALENDAR_LIST_URL,
        json={
            "items": [{"id": "me@example.com", "summary": "Me", "primary": True, "accessRole": "owner"}],
            "nextPageToken": "p2",
        },
    )
    httpx_mock.add_response(
        method="GET",
        url=CALENDAR_LIST_URL,
        json={"items": [{"id": "holidays", "summary": "Holidays", "accessRole": "reader"}]},
    )

    calendars = await service.list_calendars("token")
    await service.close()

    assert [c.id for c in calendars] == ["me@example.com", "holidays"]
    assert calendars[0].primary is True
    assert calendars[0].can_create_events() is True
    assert calendars[1].can_create_events() is False
    assert httpx_mock.get_requests()[1].url.params["pageToken"] == "p2"
