"""
OAuth2 client — authorization URL and token endpoint grants.

Talks to the provider's token endpoint for the two grants qbreport
needs: ``refresh_token`` (every report) and ``authorization_code``
(the ``/callback`` route). Client credentials travel in the form body,
not in an Authorization header, which is what QuickBooks expects.

This module holds no token state of its own; persistence of the
refresh token is the job of :mod:`qbreport.auth.token_store` and
rotation handling lives in :mod:`qbreport.auth.token_source`.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import httpx

from qbreport.config import QuickBooksConfig
from qbreport.errors import AuthExchangeError

logger = logging.getLogger("qbreport.auth.oauth2")


@dataclass
class TokenData:
    """Holds OAuth2 token data with expiry tracking. Never persisted."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int = 3600
    expires_at: float = 0.0
    scope: str = ""
    extra: dict[str, Any] = field(default_factory=dict)

    def __repr__(self) -> str:
        return f"TokenData(token_type={self.token_type!r}, expires_in={self.expires_in}, scope={self.scope!r})"

    @classmethod
    def from_oauth_response(cls, data: dict[str, Any]) -> TokenData:
        """Parse a standard OAuth2 token response."""
        expires_in = int(data.get("expires_in", 3600))
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", ""),
            token_type=data.get("token_type", "Bearer") or "Bearer",
            expires_in=expires_in,
            expires_at=time.time() + expires_in,
            scope=data.get("scope", ""),
            extra={k: v for k, v in data.items() if k not in {
                "access_token", "refresh_token", "token_type", "expires_in", "scope",
            }},
        )


class OAuth2Client:
    """OAuth2 authorization-code and refresh-token client.

    Usage::

        client = OAuth2Client(config.quickbooks, http=httpx.AsyncClient())
        url = client.get_authorization_url(state="state")
        token = await client.exchange_code(code)
        token = await client.refresh(token.refresh_token)
    """

    def __init__(self, config: QuickBooksConfig, *, http: httpx.AsyncClient | None = None) -> None:
        self.client_id = config.client_id
        self.client_secret = config.client_secret
        self.auth_url = config.auth_url
        self.token_url = config.token_url
        self.redirect_uri = config.redirect_url
        self.scopes = list(config.scopes)
        self._http_client = http
        self._owns_client = http is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create a reusable httpx client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=30.0)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._owns_client and self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    def get_authorization_url(self, state: str = "", *, extra_params: dict[str, str] | None = None) -> str:
        """Build the URL the user is redirected to for authorization."""
        params: dict[str, str] = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(self.scopes),
        }
        if state:
            params["state"] = state
        if extra_params:
            params.update(extra_params)

        return f"{self.auth_url}?{urlencode(params)}"

    async def refresh(self, refresh_token: str) -> TokenData:
        """Exchange a refresh token for a new access token.

        If the provider does not return a refresh token, the supplied one
        is carried over unchanged.

        Raises:
            AuthExchangeError: If the provider rejects the token or cannot be reached.
        """
        if not refresh_token:
            raise AuthExchangeError("No refresh token available. Please authenticate first.")

        payload = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        token = await self._request_token(payload, grant="refresh_token")
        if not token.refresh_token:
            token.refresh_token = refresh_token
        logger.info("Refreshed access token (expires in %ds)", token.expires_in)
        return token

    async def exchange_code(self, code: str) -> TokenData:
        """Exchange an authorization code for tokens (authorization code flow, step 2).

        Raises:
            AuthExchangeError: If the provider rejects the code or cannot be reached.
        """
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
        }
        token = await self._request_token(payload, grant="authorization_code")
        logger.info("Exchanged authorization code for tokens")
        return token

    async def _request_token(self, payload: dict[str, str], *, grant: str) -> TokenData:
        client = await self._get_client()
        data = {
            **payload,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }

        logger.debug("Requesting %s grant from %s", grant, self.token_url)
        try:
            resp = await client.post(self.token_url, data=data, headers={"Accept": "application/json"})
            resp.raise_for_status()
            return TokenData.from_oauth_response(resp.json())
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise AuthExchangeError(
                f"{grant} grant rejected by provider (HTTP {status}): {_error_detail(e.response)}",
                status_code=status,
            ) from e
        except httpx.RequestError as e:
            raise AuthExchangeError(f"{grant} grant failed: {e}") from e
        except (ValueError, KeyError) as e:
            raise AuthExchangeError(f"{grant} grant returned an unusable response: {e}") from e


def _error_detail(resp: httpx.Response) -> str:
    """Pull the OAuth2 error code out of a failed token response."""
    try:
        body = resp.json()
    except ValueError:
        return resp.reason_phrase
    if isinstance(body, dict):
        return str(body.get("error_description") or body.get("error") or resp.reason_phrase)
    return resp.reason_phrase
