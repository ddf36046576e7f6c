"""
verify.py
---------
Purpose:
    Bearer JWT verification against the configured JWKS endpoint.

Notes:
    - Signing keys are fetched lazily and cached by PyJWKClient.
    - Provides `auth_dependency` for protected routes; the user id is the `sub` claim.
"""

from functools import lru_cache

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt import PyJWKClient

from slotbook.config import settings

ALLOWED_ALGORITHMS = ["ES256", "RS256"]

_security = HTTPBearer()


@lru_cache(maxsize=1)
def _jwk_client() -> PyJWKClient:
    if not settings.JWKS_URL:
        raise RuntimeError("JWKS_URL not configured")
    return PyJWKClient(settings.JWKS_URL)


def verify_jwt(token: str) -> dict:
    try:
        signing_key = _jwk_client().get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=ALLOWED_ALGORITHMS,
            audience=settings.JWT_AUDIENCE,
            options={"verify_exp": True},
        )
    except (jwt.PyJWTError, RuntimeError) as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid authentication token: {e}",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e


def auth_dependency(credentials: HTTPAuthorizationCredentials = Depends(_security)) -> dict:
    return verify_jwt(credentials.credentials)
