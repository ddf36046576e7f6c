"""
Persistence for encrypted OAuth tokens (oauth_tokens table).
Values are stored and returned as ciphertext; encryption lives in the token service.
"""

from datetime import datetime

from slotbook.db.helpers import execute_query, fetch_one, with_db_retry


class OAuthTokenRepository:
    async def get(self, user_id: str, provider: str = "google") -> dict | None:
        query = """
            SELECT access_token, refresh_token, scope, expires_at, updated_at
            FROM oauth_tokens
            WHERE user_id = %s AND provider = %s
        """
        return await fetch_one(query, (user_id, provider))

    @with_db_retry(max_retries=3, base_delay=0.1)
    async def upsert(
        self,
        user_id: str,
        encrypted_access: bytes,
        encrypted_refresh: bytes | None,
        scope: str | None,
        expires_at: datetime | None,
        provider: str = "google",
    ) -> bool:
        # A refresh that returns no refresh token keeps the stored one
        query = """
            INSERT INTO oauth_tokens (
                user_id, provider, access_token, refresh_token, scope, expires_at, updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, NOW())
            ON CONFLICT (user_id, provider)
            DO UPDATE SET
                access_token = EXCLUDED.access_token,
                refresh_token = COALESCE(EXCLUDED.refresh_token, oauth_tokens.refresh_token),
                scope = COALESCE(EXCLUDED.scope, oauth_tokens.scope),
                expires_at = EXCLUDED.expires_at,
                updated_at = NOW()
        """
        affected = await execute_query(
            query, (user_id, provider, encrypted_access, encrypted_refresh, scope, expires_at)
        )
        return affected > 0
