"""
Token source: turns the stored refresh token into a usable access token.

QuickBooks rotates refresh tokens: once a new one is issued the old one
stops working. The new value is therefore written to the token store
*before* the access token is handed back, so a crash or a concurrent
request can never pick up a refresh token the provider already retired.
"""

from __future__ import annotations

import asyncio
import logging

from qbreport.auth.oauth2 import OAuth2Client, TokenData
from qbreport.auth.token_store import TokenStore

logger = logging.getLogger("qbreport.auth.token_source")


class TokenSource:
    """Produces access tokens and propagates refresh token rotation.

    Usage::

        source = TokenSource(oauth_client, store)
        token = await source.access_token()
        headers = {"Authorization": f"Bearer {token.access_token}"}
    """

    def __init__(self, oauth: OAuth2Client, store: TokenStore) -> None:
        self.oauth = oauth
        self.store = store
        self._exchange_lock = asyncio.Lock()

    async def obtain(self, current_refresh_token: str) -> TokenData:
        """Exchange ``current_refresh_token`` for an access token.

        If the provider rotates the refresh token, the new value is stored
        before this method returns. On any failure nothing is stored.

        Raises:
            AuthExchangeError: If the exchange fails.
            TokenStoreError: If a rotated token cannot be persisted.
        """
        token = await self.oauth.refresh(current_refresh_token)

        if token.refresh_token != current_refresh_token:
            await asyncio.to_thread(self.store.put, token.refresh_token)
            logger.info("Refresh token rotated; stored new value")

        return token

    async def access_token(self) -> TokenData:
        """Read the stored refresh token and obtain an access token.

        The read-exchange-write sequence is serialized within this process
        so two requests never present the same refresh token.

        Raises:
            TokenNotFoundError: If the store is empty (no exchange is attempted).
            AuthExchangeError: If the exchange fails.
        """
        async with self._exchange_lock:
            refresh_token = await asyncio.to_thread(self.store.get)
            return await self.obtain(refresh_token)
