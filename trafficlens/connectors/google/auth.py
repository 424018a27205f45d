"""Trafficlens — Google OAuth Token Manager.

Keeps a connected account's access token usable: refreshes it when the
stored expiry has passed (or when the API rejects it), persists the new
token, and marks the account invalid when Google answers ``invalid_grant``
so the connect UI can prompt the user to reconnect.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx
from sqlmodel import Session

from trafficlens.config import settings
from trafficlens.models.account_models import GAAccount, TokenStatus
from trafficlens.core.logging import get_logger

logger = get_logger("google.auth")

EXPIRY_SKEW = timedelta(seconds=60)


class TokenRefreshError(Exception):
    """Raised when the refresh-token exchange fails."""

    def __init__(self, message: str, invalid_grant: bool = False):
        self.invalid_grant = invalid_grant
        super().__init__(message)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands datetimes back naive
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_token_expired(account: GAAccount, now: Optional[datetime] = None) -> bool:
    """True when the stored expiry is in the past (with a small skew)."""
    if account.token_expiry is None:
        return False
    now = now or datetime.now(timezone.utc)
    return _as_utc(account.token_expiry) <= now + EXPIRY_SKEW


async def exchange_refresh_token(
    refresh_token: str, http_client: Optional[httpx.AsyncClient] = None
) -> tuple[str, Optional[datetime]]:
    """Trade a refresh token for a new access token and its expiry."""
    data = {
        "grant_type": "refresh_token",
        "refresh_token": refresh_token,
        "client_id": settings.google_client_id,
        "client_secret": settings.google_client_secret,
    }
    owns_client = http_client is None
    client = http_client or httpx.AsyncClient(timeout=settings.request_timeout)
    try:
        resp = await client.post(settings.google_token_url, data=data)
    except httpx.RequestError as e:
        raise TokenRefreshError(f"Token endpoint unreachable: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    try:
        body = resp.json()
    except ValueError:
        body = {}

    if resp.status_code >= 400:
        error = body.get("error", "") if isinstance(body, dict) else ""
        description = body.get("error_description", "") if isinstance(body, dict) else ""
        raise TokenRefreshError(
            f"Token refresh failed ({resp.status_code}): {error} {description}".strip(),
            invalid_grant=error == "invalid_grant",
        )

    access_token = body.get("access_token")
    if not access_token:
        raise TokenRefreshError("No access token returned from refresh")

    expires_in = body.get("expires_in")
    expiry = (
        datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
        if expires_in
        else None
    )
    return access_token, expiry


class TokenManager:
    """Refresh and persist tokens for a single connected account."""

    def __init__(
        self,
        session: Session,
        account: GAAccount,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.session = session
        self.account = account
        self.http_client = http_client

    async def ensure_fresh(self) -> str:
        """Return a usable access token, refreshing first if it has expired."""
        if is_token_expired(self.account):
            logger.info(
                "Access token expired, refreshing...",
                extra={"user_id": self.account.user_id},
            )
            return await self.refresh()
        return self.account.access_token

    async def refresh(self) -> str:
        """Refresh the access token and store it on the account."""
        try:
            access_token, expiry = await exchange_refresh_token(
                self.account.refresh_token, self.http_client
            )
        except TokenRefreshError as e:
            logger.error(
                f"Token refresh failed: {e}", extra={"user_id": self.account.user_id}
            )
            if e.invalid_grant:
                self.mark_invalid()
                raise TokenRefreshError(
                    "Failed to refresh access token - please reconnect your Google account",
                    invalid_grant=True,
                ) from e
            raise

        self.account.access_token = access_token
        self.account.token_expiry = expiry
        self.account.token_status = TokenStatus.VALID.value
        self.account.updated_at = datetime.now(timezone.utc)
        self.session.add(self.account)
        self.session.commit()
        self.session.refresh(self.account)
        logger.info("Token refreshed successfully", extra={"user_id": self.account.user_id})
        return access_token

    def mark_invalid(self) -> None:
        logger.warning(
            "Marking token as invalid", extra={"user_id": self.account.user_id}
        )
        self.account.token_status = TokenStatus.INVALID.value
        self.account.updated_at = datetime.now(timezone.utc)
        self.session.add(self.account)
        self.session.commit()
