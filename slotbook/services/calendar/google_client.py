"""
Google Calendar API client for availability reads and event inserts.
Low-level Calendar API client: one HTTP request per call, responses
validated into domain models at this boundary.
"""

from datetime import datetime
from typing import Any

import httpx
from pydantic import ValidationError

from slotbook.config import settings
from slotbook.infrastructure.observability.logging import get_logger
from slotbook.models.domain.calendar_domain import (
    CalendarInfo,
    CalendarListPage,
    CreatedEvent,
    EventsPage,
    FreeBusyResponse,
    ProviderEvent,
)

logger = get_logger(__name__)

# Google Calendar API configuration
CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
CALENDAR_PRIMARY = "primary"  # User's primary calendar

EVENT_COLOR_ID = "7"
MAX_EVENT_PAGES = 10


class GoogleCalendarError(Exception):
    """Custom exception for Google Calendar API errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}


class GoogleCalendarService:
    """
    Service for Google Calendar API operations.

    Lists a day's events, answers free/busy queries and inserts events.
    Retries are never attempted here; a failed call surfaces immediately
    so the caller decides what to do with it.
    """

    def __init__(self, timeout_seconds: float | None = None):
        self.timeout_seconds = timeout_seconds or settings.REQUEST_TIMEOUT_SECONDS
        self._client = self._create_client()

    def _create_client(self) -> httpx.AsyncClient:
        """Create async HTTP client for Calendar API."""
        timeout = httpx.Timeout(self.timeout_seconds)
        limits = httpx.Limits(max_keepalive_connections=20, max_connections=50)
        return httpx.AsyncClient(timeout=timeout, limits=limits)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _request(self, method: str, url: str, operation: str, **kwargs) -> httpx.Response:
        """Execute a single HTTP request, classifying transport failures."""
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"Calendar API {operation} timed out", timeout_seconds=self.timeout_seconds)
            raise GoogleCalendarError(
                f"Calendar API {operation} timed out", error_code="timeout"
            ) from e
        except httpx.RequestError as e:
            logger.warning(f"Calendar API {operation} network error", error=str(e))
            raise GoogleCalendarError(
                f"Calendar API {operation} network error: {e}", error_code="network"
            ) from e

    def _get_auth_headers(self, access_token: str) -> dict:
        """Get authorization headers for Calendar API requests."""
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _handle_api_response(self, response: httpx.Response, operation: str) -> dict:
        """
        Handle and validate Calendar API response.

        Args:
            response: HTTP response from Calendar API
            operation: Operation name for logging

        Returns:
            dict: Parsed response data

        Raises:
            GoogleCalendarError: If response contains errors
        """
        logger.debug(
            f"Calendar API {operation} response",
            status_code=response.status_code,
            response_size=len(response.text) if response.text else 0,
        )

        if response.is_success:
            try:
                data = response.json() if response.text else {}
            except ValueError as e:
                logger.error(f"Failed to parse Calendar API {operation} response", error=str(e))
                raise GoogleCalendarError(
                    f"Invalid response format: {e}", error_code="invalid_response"
                ) from e
            if not isinstance(data, dict):
                raise GoogleCalendarError(
                    "Invalid response format: expected an object", error_code="invalid_response"
                )
            return data

        try:
            error_data = response.json() if response.text else {}
        except ValueError:
            logger.error(
                f"Calendar API {operation} failed with non-JSON response",
                status_code=response.status_code,
                response_text=response.text[:200] if response.text else "",
            )
            raise GoogleCalendarError(
                f"Calendar API error (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from None

        error_info = error_data.get("error", {}) if isinstance(error_data, dict) else {}
        if not isinstance(error_info, dict):
            error_info = {"message": str(error_info)}

        error_code = error_info.get("code", response.status_code)
        error_message = error_info.get("message", "Unknown Calendar API error")

        logger.error(
            f"Calendar API {operation} failed",
            status_code=response.status_code,
            error_code=error_code,
            error_message=error_message,
        )

        raise GoogleCalendarError(
            self._map_calendar_error(str(response.status_code), error_message),
            error_code=str(error_code),
            status_code=response.status_code,
            response_data=error_data if isinstance(error_data, dict) else {},
        )

    def _map_calendar_error(self, status: str, error_message: str) -> str:
        """Map Calendar API status codes to readable diagnostics."""
        error_mappings = {
            "400": "Invalid calendar request format.",
            "401": "Calendar authorization expired. Please reconnect.",
            "403": "Calendar access denied. Please check permissions.",
            "404": "Calendar or event not found.",
            "409": "Calendar event conflicts with an existing event.",
            "429": "Too many calendar requests. Please try again later.",
            "500": "Google Calendar service temporarily unavailable.",
            "503": "Google Calendar service temporarily unavailable.",
        }

        return error_mappings.get(status, f"Calendar error: {error_message}")

    def _parse(self, model: type, data: dict, operation: str):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.error(f"Calendar API {operation} returned an unexpected shape", error=str(e))
            raise GoogleCalendarError(
                f"Invalid {operation} response: {e.error_count()} validation errors",
                error_code="invalid_response",
            ) from e

    async def list_calendars(self, access_token: str) -> list[CalendarInfo]:
        """
        List all calendars accessible to the user.

        Raises:
            GoogleCalendarError: If listing calendars fails
        """
        try:
            url = f"{CALENDAR_API_BASE_URL}/users/me/calendarList"
            headers = self._get_auth_headers(access_token)
            params: dict[str, Any] = {}

            logger.info("Listing user calendars")

            calendars: list[CalendarInfo] = []
            for _ in range(MAX_EVENT_PAGES):
                response = await self._request("GET", url, "list_calendars", headers=headers, params=params)
                data = self._handle_api_response(response, "list_calendars")
                page: CalendarListPage = self._parse(CalendarListPage, data, "list_calendars")
                calendars.extend(page.items)
                if not page.next_page_token:
                    break
                params["pageToken"] = page.next_page_token

            logger.info("Calendars listed successfully", calendar_count=len(calendars))
            return calendars

        except GoogleCalendarError:
            raise
        except Exception as e:
            logger.error("Unexpected error listing calendars", error=str(e))
            raise GoogleCalendarError(f"Failed to list calendars: {e}") from e

    async def list_events(
        self,
        access_token: str,
        time_min: datetime,
        time_max: datetime,
        calendar_id: str = CALENDAR_PRIMARY,
        max_results: int = 250,
    ) -> list[ProviderEvent]:
        """
        List events overlapping [time_min, time_max), recurring events expanded.

        Follows nextPageToken up to MAX_EVENT_PAGES pages.

        Raises:
            GoogleCalendarError: If listing events fails
        """
        try:
            url = f"{CALENDAR_API_BASE_URL}/calendars/{calendar_id}/events"
            headers = self._get_auth_headers(access_token)

            params: dict[str, Any] = {
                "timeMin": time_min.isoformat(),
                "timeMax": time_max.isoformat(),
                "maxResults": max_results,
                "singleEvents": "true",
                "orderBy": "startTime",
            }

            logger.info(
                "Listing calendar events",
                calendar_id=calendar_id,
                time_min=params["timeMin"],
                time_max=params["timeMax"],
            )

            events: list[ProviderEvent] = []
            for _ in range(MAX_EVENT_PAGES):
                response = await self._request("GET", url, "list_events", headers=headers, params=params)
                data = self._handle_api_response(response, "list_events")
                page: EventsPage = self._parse(EventsPage, data, "list_events")
                events.extend(page.items)
                if not page.next_page_token:
                    break
                params["pageToken"] = page.next_page_token

            logger.info("Events listed successfully", calendar_id=calendar_id, event_count=len(events))
            return events

        except GoogleCalendarError:
            raise
        except Exception as e:
            logger.error("Unexpected error listing events", calendar_id=calendar_id, error=str(e))
            raise GoogleCalendarError(f"Failed to list events: {e}") from e

    async def free_busy(
        self,
        access_token: str,
        start_time: datetime,
        end_time: datetime,
        calendar_ids: list[str] | None = None,
    ) -> FreeBusyResponse:
        """
        Query busy periods for [start_time, end_time) across calendars.

        Raises:
            GoogleCalendarError: If the free/busy query fails
        """
        try:
            if not calendar_ids:
                calendar_ids = [CALENDAR_PRIMARY]

            url = f"{CALENDAR_API_BASE_URL}/freeBusy"
            headers = self._get_auth_headers(access_token)

            query_data = {
                "timeMin": start_time.isoformat(),
                "timeMax": end_time.isoformat(),
                "items": [{"id": cal_id} for cal_id in calendar_ids],
            }

            logger.info(
                "Checking calendar availability",
                start_time=start_time.isoformat(),
                end_time=end_time.isoformat(),
                calendar_count=len(calendar_ids),
            )

            response = await self._request("POST", url, "free_busy", headers=headers, json=query_data)
            data = self._handle_api_response(response, "free_busy")
            result: FreeBusyResponse = self._parse(FreeBusyResponse, data, "free_busy")

            logger.info(
                "Availability check completed",
                busy_periods_count=len(result.all_busy_periods()),
                calendars_with_errors=len(result.calendars_with_errors()),
            )
            return result

        except GoogleCalendarError:
            raise
        except Exception as e:
            logger.error("Unexpected error checking availability", error=str(e))
            raise GoogleCalendarError(f"Failed to check availability: {e}") from e

    async def create_event(
        self,
        access_token: str,
        summary: str,
        start_time: datetime,
        end_time: datetime,
        reminder_minutes: list[int] | None = None,
        calendar_id: str = CALENDAR_PRIMARY,
        timezone_str: str | None = None,
    ) -> CreatedEvent:
        """
        Insert a timed event with popup reminders.

        Raises:
            GoogleCalendarError: If creating the event fails
        """
        try:
            url = f"{CALENDAR_API_BASE_URL}/calendars/{calendar_id}/events"
            headers = self._get_auth_headers(access_token)
            tz_name = timezone_str or settings.SCHEDULING_TIMEZONE

            event_data: dict[str, Any] = {
                "summary": summary,
                "start": {"dateTime": start_time.isoformat(), "timeZone": tz_name},
                "end": {"dateTime": end_time.isoformat(), "timeZone": tz_name},
                "colorId": EVENT_COLOR_ID,
            }

            if reminder_minutes:
                event_data["reminders"] = {
                    "useDefault": False,
                    "overrides": [{"method": "popup", "minutes": m} for m in reminder_minutes],
                }

            logger.info(
                "Creating calendar event",
                summary=summary,
                start_time=start_time.isoformat(),
                calendar_id=calendar_id,
            )

            response = await self._request("POST", url, "create_event", headers=headers, json=event_data)
            data = self._handle_api_response(response, "create_event")
            event: CreatedEvent = self._parse(CreatedEvent, data, "create_event")

            logger.info("Event created successfully", event_id=event.id, summary=summary)
            return event

        except GoogleCalendarError:
            raise
        except Exception as e:
            logger.error("Unexpected error creating event", summary=summary, error=str(e))
            raise GoogleCalendarError(f"Failed to create event: {e}") from e


# Singleton instance for application use
google_calendar_service = GoogleCalendarService()
