"""Tests for the OAuth2 client."""

from __future__ import annotations

from unittest.mock import AsyncMock
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from qbreport.auth.oauth2 import OAuth2Client, TokenData
from qbreport.config import QuickBooksConfig
from qbreport.errors import AuthExchangeError

TOKEN_URL = "https://example.com/oauth/token"


def _config() -> QuickBooksConfig:
    return QuickBooksConfig(
        client_id="test_client",
        client_secret="test_secret",
        callback_base_url="https://myapp.com",
        refresh_token="ref",
        realm_id="123",
        auth_url="https://example.com/authorize",
        token_url=TOKEN_URL,
    )


def _response(status_code: int, json: object | None = None, text: str | None = None) -> httpx.Response:
    request = httpx.Request("POST", TOKEN_URL)
    if json is not None:
        return httpx.Response(status_code, json=json, request=request)
    return httpx.Response(status_code, text=text or "", request=request)


def _client_returning(response: httpx.Response | Exception) -> AsyncMock:
    mock_client = AsyncMock()
    mock_client.is_closed = False
    if isinstance(response, Exception):
        mock_client.post.side_effect = response
    else:
        mock_client.post.return_value = response
    return mock_client


# ---------------------------------------------------------------------------
# TokenData tests
# ---------------------------------------------------------------------------


class TestTokenData:
    def test_from_oauth_response(self) -> None:
        data = {
            "access_token": "abc123",
            "refresh_token": "ref456",
            "token_type": "bearer",
            "expires_in": 3600,
            "x_refresh_token_expires_in": 8726400,
        }
        token = TokenData.from_oauth_response(data)
        assert token.access_token == "abc123"
        assert token.refresh_token == "ref456"
        assert token.expires_in == 3600
        assert token.extra["x_refresh_token_expires_in"] == 8726400

    def test_repr_hides_secrets(self) -> None:
        token = TokenData(access_token="secret-access", refresh_token="secret-refresh")
        assert "secret" not in repr(token)


# ---------------------------------------------------------------------------
# OAuth2Client tests
# ---------------------------------------------------------------------------


class TestOAuth2Client:
    def test_get_authorization_url(self) -> None:
        url = OAuth2Client(_config()).get_authorization_url(state="state")
        parsed = urlparse(url)
        params = parse_qs(parsed.query)
        assert url.startswith("https://example.com/authorize?")
        assert params["response_type"] == ["code"]
        assert params["client_id"] == ["test_client"]
        assert params["redirect_uri"] == ["https://myapp.com/callback"]
        assert params["scope"] == ["com.intuit.quickbooks.accounting"]
        assert params["state"] == ["state"]

    @pytest.mark.asyncio
    async def test_refresh_sends_credentials_in_body(self) -> None:
        mock_client = _client_returning(_response(200, {
            "access_token": "new_access",
            "refresh_token": "new_refresh",
            "expires_in": 3600,
            "token_type": "bearer",
        }))
        client = OAuth2Client(_config(), http=mock_client)

        token = await client.refresh("old_refresh")
        assert token.access_token == "new_access"
        assert token.refresh_token == "new_refresh"

        call_kwargs = mock_client.post.call_args
        assert call_kwargs[0][0] == TOKEN_URL
        post_data = call_kwargs[1]["data"]
        assert post_data == {
            "grant_type": "refresh_token",
            "refresh_token": "old_refresh",
            "client_id": "test_client",
            "client_secret": "test_secret",
        }
        assert "Authorization" not in call_kwargs[1]["headers"]

    @pytest.mark.asyncio
    async def test_refresh_without_rotation_keeps_token(self) -> None:
        mock_client = _client_returning(_response(200, {"access_token": "a", "expires_in": 3600}))
        token = await OAuth2Client(_config(), http=mock_client).refresh("old_refresh")
        assert token.refresh_token == "old_refresh"

    @pytest.mark.asyncio
    async def test_refresh_rejected(self) -> None:
        mock_client = _client_returning(_response(400, {"error": "invalid_grant"}))
        client = OAuth2Client(_config(), http=mock_client)

        with pytest.raises(AuthExchangeError, match="invalid_grant") as exc_info:
            await client.refresh("revoked")
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_refresh_network_error(self) -> None:
        mock_client = _client_returning(httpx.ConnectError("connection refused"))
        client = OAuth2Client(_config(), http=mock_client)

        with pytest.raises(AuthExchangeError, match="connection refused") as exc_info:
            await client.refresh("ref")
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_refresh_unusable_response(self) -> None:
        mock_client = _client_returning(_response(200, {"token_type": "bearer"}))
        with pytest.raises(AuthExchangeError, match="unusable response"):
            await OAuth2Client(_config(), http=mock_client).refresh("ref")

    @pytest.mark.asyncio
    async def test_refresh_requires_token(self) -> None:
        mock_client = _client_returning(_response(200, {}))
        with pytest.raises(AuthExchangeError, match="No refresh token"):
            await OAuth2Client(_config(), http=mock_client).refresh("")
        mock_client.post.assert_not_called()

    @pytest.mark.asyncio
    async def test_exchange_code(self) -> None:
        mock_client = _client_returning(_response(200, {
            "access_token": "code_access",
            "refresh_token": "code_refresh",
            "expires_in": 3600,
        }))
        client = OAuth2Client(_config(), http=mock_client)

        token = await client.exchange_code("auth_code_123")
        assert token.access_token == "code_access"
        assert token.refresh_token == "code_refresh"

        post_data = mock_client.post.call_args[1]["data"]
        assert post_data["grant_type"] == "authorization_code"
        assert post_data["code"] == "auth_code_123"
        assert post_data["redirect_uri"] == "https://myapp.com/callback"

    @pytest.mark.asyncio
    async def test_close_leaves_injected_client_open(self) -> None:
        mock_client = _client_returning(_response(200, {}))
        await OAuth2Client(_config(), http=mock_client).close()
        mock_client.aclose.assert_not_called()
