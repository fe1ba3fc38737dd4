"""
APS 3-legged token management.

The OAuth login itself happens elsewhere; this module only keeps a stored
user's access token fresh so background runs can call Autodesk on the
user's behalf.
"""

import uuid
from dataclasses import dataclass

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from accpublish.config import get_settings
from accpublish.core.errors import CredentialError
from accpublish.core.logging import get_logger
from accpublish.models.user import User

logger = get_logger(__name__)


@dataclass
class ApsTokens:
    """Token pair returned by the APS token endpoint."""

    access_token: str
    refresh_token: str | None
    expires_in: int


async def refresh_access_token(
    refresh_token: str,
    client: httpx.AsyncClient | None = None,
) -> ApsTokens | None:
    """
    Exchange a refresh token for a new access token.

    Args:
        refresh_token: Stored APS refresh token
        client: Optional HTTP client (a short-lived one is created otherwise)

    Returns:
        ApsTokens if successful, None otherwise
    """
    settings = get_settings()

    async def _post(http: httpx.AsyncClient) -> httpx.Response:
        return await http.post(
            settings.aps_token_url,
            data={
                "grant_type": "refresh_token",
                "client_id": settings.aps_client_id,
                "client_secret": settings.aps_client_secret,
                "refresh_token": refresh_token,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

    try:
        if client is not None:
            resp = await _post(client)
        else:
            async with httpx.AsyncClient(timeout=30.0) as http:
                resp = await _post(http)
    except httpx.HTTPError as e:
        logger.bind(error=str(e)).error("aps_token_refresh_error")
        return None

    if resp.status_code != 200:
        logger.bind(status=resp.status_code, response=resp.text[:200]).error(
            "aps_token_refresh_failed"
        )
        return None

    data = resp.json()
    logger.debug("aps_token_refreshed")
    return ApsTokens(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token"),
        expires_in=int(data.get("expires_in", 3600)),
    )


class ApsCredentialProvider:
    """Hands out valid access tokens for stored users."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.client = client

    async def ensure_valid_token(self, user_id: uuid.UUID) -> str:
        """
        Return a usable access token for the user, refreshing it if expired.

        Raises:
            CredentialError: Unknown user, no refresh token, or refresh failed
        """
        async with self.session_factory() as db:
            user = await db.get(User, user_id)
            if user is None:
                raise CredentialError(f"User {user_id} not found")

            if not user.is_token_expired():
                return str(user.access_token)

            if not user.refresh_token:
                raise CredentialError("Missing refresh token, user must sign in again")

            tokens = await refresh_access_token(user.refresh_token, client=self.client)
            if tokens is None:
                raise CredentialError("APS token refresh failed")

            user.update_tokens(
                tokens.access_token,
                tokens.refresh_token or user.refresh_token,
                tokens.expires_in,
            )
            await db.commit()
            logger.bind(user_id=str(user_id)).info("aps_user_token_refreshed")
            return tokens.access_token
