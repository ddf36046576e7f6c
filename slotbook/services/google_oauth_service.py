"""
Google OAuth Service for Calendar API access.
Refreshes access tokens against the Google token endpoint.
"""

from datetime import UTC, datetime, timedelta

import httpx

from slotbook.config import settings
from slotbook.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"


class GoogleOAuthError(Exception):
    """Custom exception for Google OAuth-related errors."""

    def __init__(
        self, message: str, error_code: str | None = None, response_data: dict | None = None
    ):
        super().__init__(message)
        self.error_code = error_code
        self.response_data = response_data or {}


class TokenResponse:
    """Structured representation of OAuth token response."""

    def __init__(self, data: dict):
        self.access_token = data.get("access_token")
        self.refresh_token = data.get("refresh_token")
        self.token_type = data.get("token_type", "Bearer")
        self.expires_in = data.get("expires_in")
        self.scope = data.get("scope", "")

        if self.expires_in:
            self.expires_at = datetime.now(UTC) + timedelta(seconds=int(self.expires_in))
        else:
            self.expires_at = None

    def is_valid(self) -> bool:
        """Check if token response contains required fields."""
        return bool(self.access_token and self.token_type)

    def has_calendar_access(self) -> bool:
        if not self.scope:
            # Refresh responses may omit scope; the original grant still applies
            return True
        return "calendar" in self.scope


class GoogleOAuthService:
    """
    Service for Google OAuth 2.0 token refresh.

    A refresh is attempted once; callers treat any failure as terminal
    for the current booking attempt.
    """

    def __init__(self, timeout_seconds: float | None = None):
        self.client_id = settings.GOOGLE_CLIENT_ID
        self.client_secret = settings.GOOGLE_CLIENT_SECRET
        self.timeout_seconds = timeout_seconds or settings.REQUEST_TIMEOUT_SECONDS

    def _validate_config(self) -> None:
        if not self.client_id:
            raise GoogleOAuthError("GOOGLE_CLIENT_ID not configured", error_code="config")
        if not self.client_secret:
            raise GoogleOAuthError("GOOGLE_CLIENT_SECRET not configured", error_code="config")

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """
        Refresh access token using refresh token.

        Args:
            refresh_token: Valid refresh token

        Returns:
            TokenResponse: New access token (may include new refresh token)

        Raises:
            GoogleOAuthError: If token refresh fails
        """
        self._validate_config()

        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "refresh_token": refresh_token,
            "grant_type": "refresh_token",
        }

        logger.info("Refreshing Google access token", refresh_token_preview=refresh_token[:8] + "...")

        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(
                    GOOGLE_TOKEN_URL,
                    data=data,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.RequestError as e:
            logger.error(
                "Network error during token refresh",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise GoogleOAuthError(f"Network error during token refresh: {e}", error_code="network") from e

        token_response = self._handle_token_response(response, "token_refresh")

        # Google may not return a new refresh token on refresh
        if not token_response.refresh_token:
            token_response.refresh_token = refresh_token

        return token_response

    def _handle_token_response(self, response: httpx.Response, operation: str) -> TokenResponse:
        """
        Handle and validate token response from Google.

        Raises:
            GoogleOAuthError: If response is invalid or contains errors
        """
        logger.debug(
            f"Google {operation} response",
            status_code=response.status_code,
            response_size=len(response.text),
        )

        if not response.is_success:
            try:
                error_data = response.json()
            except ValueError:
                logger.error(
                    f"Google {operation} failed with non-JSON response",
                    status_code=response.status_code,
                    response_text=response.text[:200],
                )
                raise GoogleOAuthError(
                    f"Google OAuth service error (HTTP {response.status_code})"
                ) from None

            error_code = error_data.get("error", "unknown_error")
            error_description = error_data.get("error_description", "No description provided")

            logger.error(
                f"Google {operation} failed",
                status_code=response.status_code,
                error_code=error_code,
                error_description=error_description,
            )
            raise GoogleOAuthError(
                self._map_google_error(error_code),
                error_code=error_code,
                response_data=error_data,
            )

        try:
            token_response = TokenResponse(response.json())
        except ValueError as e:
            logger.error(f"Failed to parse Google {operation} response", error=str(e))
            raise GoogleOAuthError(f"Failed to parse Google response: {e}") from e

        if not token_response.is_valid():
            logger.error(
                f"Invalid token response from Google {operation}",
                has_access_token=bool(token_response.access_token),
            )
            raise GoogleOAuthError("Invalid token response from Google")

        logger.info(
            f"Google {operation} successful",
            expires_in=token_response.expires_in,
            has_calendar_access=token_response.has_calendar_access(),
        )
        return token_response

    def _map_google_error(self, error_code: str) -> str:
        error_mappings = {
            "invalid_grant": "Calendar authorization has been revoked or expired. Please reconnect.",
            "invalid_client": "OAuth client configuration error.",
            "unauthorized_client": "OAuth client not authorized for this grant type.",
            "invalid_request": "Invalid token refresh request.",
        }
        return error_mappings.get(error_code, f"OAuth error: {error_code}")


google_oauth_service = GoogleOAuthService()
