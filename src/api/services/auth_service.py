"""
Delegated authorization for tools.

The chat request carries the caller's bearer token. The engine never issues
or verifies tokens itself; it only needs to know *who* the caller is so that
tools flagged ``auth_required`` can use the OAuth access token the user has
connected for the tool's provider.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any, Protocol

import asyncpg

from jose import JWTError, jwt

from utils.logger import logger

#: Claims checked, in order, for the user id in an unverified bearer token
USER_ID_CLAIMS = ("userId", "id", "sub")


def strip_bearer(token: str | None) -> str | None:
    """Credential part of an ``Authorization`` value; a bare scheme yields None."""
    parts = (token or "").split()
    if parts and parts[0].lower() == "bearer":
        parts = parts[1:]
    return " ".join(parts) or None


def user_id_from_token(auth_token: str | None) -> str | None:
    """Read the user id from a bearer token's claims without verifying its signature.

    The token is forwarded to downstream tools, which verify it; this lookup
    only picks which stored OAuth credentials to use.
    """
    token = strip_bearer(auth_token)
    if not token:
        return None
    try:
        claims: dict[str, Any] = jwt.get_unverified_claims(token)
    except JWTError as e:
        logger.warning(f"Could not decode auth token to get user id: {e}")
        return None
    for claim in USER_ID_CLAIMS:
        if claims.get(claim):
            return str(claims[claim])
    return None


class AuthTokenProvider(Protocol):
    """Looks up a user's OAuth access token for a third-party provider."""

    async def get_valid_access_token(self, user_id: str, provider: str) -> str | None: ...


class OAuthTokenService:
    """Reads connected-application tokens from the ``oauth_tokens`` table."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get_valid_access_token(self, user_id: str, provider: str) -> str | None:
        """Return an unexpired access token, or None when none is connected."""
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT access_token, expires_at
                FROM oauth_tokens
                WHERE user_id = $1 AND provider = $2
                """,
                user_id,
                provider,
            )

        if row is None:
            return None
        expires_at = row["expires_at"]
        if expires_at is not None and expires_at <= datetime.now(UTC):
            logger.info(f"OAuth token for provider '{provider}' has expired")
            return None
        token: str = row["access_token"]
        return token


__all__ = ["AuthTokenProvider", "OAuthTokenService", "strip_bearer", "user_id_from_token"]
