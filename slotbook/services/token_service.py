"""
Token Service for OAuth credential lifecycle.
Loads encrypted tokens into CalendarCredential objects and performs the
single refresh a booking attempt is allowed after an upstream 401.
"""

from slotbook.db.helpers import DatabaseError
from slotbook.infrastructure.observability.logging import get_logger
from slotbook.models.domain.calendar_domain import CalendarCredential
from slotbook.repositories.oauth_token_repository import OAuthTokenRepository
from slotbook.services.encryption_service import (
    EncryptionError,
    decrypt_oauth_tokens,
    encrypt_oauth_tokens,
)
from slotbook.services.google_oauth_service import (
    GoogleOAuthError,
    GoogleOAuthService,
    TokenResponse,
    google_oauth_service,
)

logger = get_logger(__name__)


class TokenServiceError(Exception):
    """Custom exception for token service operations."""

    def __init__(self, message: str, user_id: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.user_id = user_id
        self.recoverable = recoverable


class TokenService:
    """
    Service for loading, storing and refreshing OAuth credentials.
    """

    def __init__(
        self,
        repository: OAuthTokenRepository | None = None,
        oauth_service: GoogleOAuthService | None = None,
    ):
        self.repository = repository or OAuthTokenRepository()
        self.oauth_service = oauth_service or google_oauth_service

    async def get_credential(self, user_id: str, provider: str = "google") -> CalendarCredential | None:
        """
        Retrieve and decrypt the stored credential for a user.

        Raises:
            TokenServiceError: If decryption or database errors occur
        """
        try:
            row = await self.repository.get(user_id, provider)
            if not row:
                logger.debug("No tokens found for user", user_id=user_id, provider=provider)
                return None

            access_token, refresh_token = decrypt_oauth_tokens(
                encrypted_access=row["access_token"], encrypted_refresh=row.get("refresh_token")
            )
            return CalendarCredential(
                user_id=user_id,
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=row.get("expires_at"),
            )

        except EncryptionError as e:
            logger.error("Token decryption failed", user_id=user_id, error=str(e))
            raise TokenServiceError(
                f"Token decryption failed: {e}", user_id=user_id, recoverable=False
            ) from e
        except DatabaseError as e:
            logger.error("Database error retrieving tokens", user_id=user_id, error=str(e))
            raise TokenServiceError(f"Database error retrieving tokens: {e}", user_id=user_id) from e

    async def store_tokens(
        self, user_id: str, token_response: TokenResponse, provider: str = "google"
    ) -> bool:
        """
        Encrypt and persist a token response.

        Raises:
            TokenServiceError: If encryption or storage fails
        """
        try:
            encrypted_access, encrypted_refresh = encrypt_oauth_tokens(
                access_token=token_response.access_token,
                refresh_token=token_response.refresh_token,
            )
            stored = await self.repository.upsert(
                user_id,
                encrypted_access,
                encrypted_refresh,
                token_response.scope or None,
                token_response.expires_at,
                provider,
            )
        except EncryptionError as e:
            logger.error("Token encryption failed", user_id=user_id, error=str(e))
            raise TokenServiceError(f"Token encryption failed: {e}", user_id=user_id) from e
        except DatabaseError as e:
            logger.error("Database error storing tokens", user_id=user_id, error=str(e))
            raise TokenServiceError(f"Database error storing tokens: {e}", user_id=user_id) from e

        if stored:
            logger.info(
                "OAuth tokens stored successfully",
                user_id=user_id,
                expires_at=token_response.expires_at.isoformat() if token_response.expires_at else None,
            )
        return stored

    async def refresh_credential(self, credential: CalendarCredential) -> CalendarCredential:
        """
        Exchange the refresh token for a new access token.

        The refreshed pair is persisted when possible; a storage failure is
        logged and the in-memory credential is still returned.

        Raises:
            TokenServiceError: (recoverable=False) if no refresh token exists or Google rejects it
        """
        user_id = credential.user_id
        if not credential.can_refresh():
            logger.warning("No refresh token available for refresh", user_id=user_id)
            raise TokenServiceError(
                "No refresh token available - re-authentication required",
                user_id=user_id,
                recoverable=False,
            )

        try:
            token_response = await self.oauth_service.refresh_access_token(credential.refresh_token)
        except GoogleOAuthError as e:
            logger.error(
                "Google OAuth error during token refresh",
                user_id=user_id,
                error=str(e),
                error_code=e.error_code,
            )
            raise TokenServiceError(
                f"Token refresh failed: {e}", user_id=user_id, recoverable=False
            ) from e

        refreshed = CalendarCredential(
            user_id=user_id,
            access_token=token_response.access_token,
            refresh_token=token_response.refresh_token or credential.refresh_token,
            expires_at=token_response.expires_at,
        )

        try:
            await self.store_tokens(user_id, token_response)
        except TokenServiceError as e:
            logger.warning("Refreshed token not persisted", user_id=user_id, error=str(e))

        logger.info("Token refresh successful", user_id=user_id)
        return refreshed


token_service = TokenService()
