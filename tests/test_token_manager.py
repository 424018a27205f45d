"""
Tests for OAuth token refresh and invalid-grant handling.
"""

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from trafficlens.connectors.google.auth import (
    TokenManager,
    TokenRefreshError,
    is_token_expired,
)
from trafficlens.models.account_models import GAAccount, TokenStatus


def token_client(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def test_is_token_expired():
    now = datetime(2024, 3, 1, 12, tzinfo=timezone.utc)
    assert is_token_expired(GAAccount(user_id="u", token_expiry=now - timedelta(minutes=5)), now)
    assert is_token_expired(GAAccount(user_id="u", token_expiry=now + timedelta(seconds=30)), now)
    assert not is_token_expired(GAAccount(user_id="u", token_expiry=now + timedelta(hours=1)), now)
    assert not is_token_expired(GAAccount(user_id="u"), now)


def test_naive_expiry_treated_as_utc():
    now = datetime(2024, 3, 1, 12, tzinfo=timezone.utc)
    naive = datetime(2024, 3, 1, 11)
    assert is_token_expired(GAAccount(user_id="u", token_expiry=naive), now)


@pytest.mark.asyncio
async def test_fresh_token_is_not_refreshed(session, account):
    def handler(request):
        raise AssertionError("token endpoint should not be called")

    manager = TokenManager(session, account, token_client(handler))
    assert await manager.ensure_fresh() == "access-abc"


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_and_persisted(session, account):
    account.token_expiry = datetime.now(timezone.utc) - timedelta(minutes=1)
    session.add(account)
    session.commit()
    forms = []

    def handler(request):
        forms.append(parse_qs(request.content.decode()))
        return httpx.Response(200, json={"access_token": "fresh-token", "expires_in": 3600})

    manager = TokenManager(session, account, token_client(handler))
    assert await manager.ensure_fresh() == "fresh-token"

    assert forms[0]["grant_type"] == ["refresh_token"]
    assert forms[0]["refresh_token"] == ["refresh-xyz"]
    stored = session.get(GAAccount, account.id)
    assert stored.access_token == "fresh-token"
    assert not is_token_expired(stored)


@pytest.mark.asyncio
async def test_invalid_grant_marks_account_invalid(session, account):
    def handler(request):
        return httpx.Response(
            400, json={"error": "invalid_grant", "error_description": "Token has been revoked"}
        )

    manager = TokenManager(session, account, token_client(handler))
    with pytest.raises(TokenRefreshError) as exc:
        await manager.refresh()

    assert exc.value.invalid_grant
    assert "reconnect" in str(exc.value)
    assert session.get(GAAccount, account.id).token_status == TokenStatus.INVALID.value


@pytest.mark.asyncio
async def test_other_refresh_errors_leave_account_valid(session, account):
    def handler(request):
        return httpx.Response(500, json={"error": "backend_error"})

    manager = TokenManager(session, account, token_client(handler))
    with pytest.raises(TokenRefreshError) as exc:
        await manager.refresh()

    assert not exc.value.invalid_grant
    assert session.get(GAAccount, account.id).token_status == TokenStatus.VALID.value


@pytest.mark.asyncio
async def test_missing_access_token_in_response(session, account):
    manager = TokenManager(
        session, account, token_client(lambda request: httpx.Response(200, json={}))
    )
    with pytest.raises(TokenRefreshError, match="No access token"):
        await manager.refresh()
