"""
qbreport HTTP server (FastAPI).

Routes:
    GET /report    consolidated QuickBooks report (JSON), 500 with empty body on failure
    GET /login     303 redirect to the QuickBooks authorization page
    GET /callback  OAuth2 redirect target; exchanges the code and stores the refresh token
    GET /health    liveness, no upstream calls

Run locally:
    qbreport serve
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
from fastapi import FastAPI, Query, Request, Response
from fastapi.responses import RedirectResponse

from qbreport import __version__
from qbreport.assembler import ReportAssembler
from qbreport.auth.oauth2 import OAuth2Client
from qbreport.auth.token_source import TokenSource
from qbreport.auth.token_store import EncryptedFileTokenStore, FileTokenStore, TokenStore
from qbreport.config import QBReportConfig
from qbreport.connectors.quickbooks_connector import QuickBooksClientFactory
from qbreport.errors import AuthExchangeError, CallbackValidationError, QBReportError, TokenStoreError

logger = logging.getLogger("qbreport.server")


@dataclass
class Services:
    """Everything a request handler needs, wired once at startup."""

    config: QBReportConfig
    oauth: OAuth2Client
    store: TokenStore
    token_source: TokenSource
    client_factory: QuickBooksClientFactory
    assembler: ReportAssembler


def make_token_store(config: QBReportConfig) -> TokenStore:
    """Pick the token store backend from the security settings."""
    if config.security.encrypt_token_file:
        return EncryptedFileTokenStore(config.server.token_file, config.security.token_passphrase or "")
    return FileTokenStore(config.server.token_file)


def build_services(
    config: QBReportConfig,
    http: httpx.AsyncClient,
    *,
    store: TokenStore | None = None,
) -> Services:
    """Wire the OAuth2 client, token store, token source, client factory and assembler."""
    qbo = config.quickbooks
    store = store or make_token_store(config)
    oauth = OAuth2Client(qbo, http=http)
    token_source = TokenSource(oauth, store)
    client_factory = QuickBooksClientFactory(http, base_url=qbo.api_base_url)
    assembler = ReportAssembler(token_source, client_factory, qbo.realm_id, config.report)
    return Services(
        config=config,
        oauth=oauth,
        store=store,
        token_source=token_source,
        client_factory=client_factory,
        assembler=assembler,
    )


def validate_callback(code: str, state: str, realm_id: str) -> None:
    """Raise :class:`CallbackValidationError` naming every empty parameter."""
    missing = [
        name
        for name, value in (("code", code), ("state", state), ("realmId", realm_id))
        if not value
    ]
    if missing:
        raise CallbackValidationError(missing)


async def wait_for_disconnect(request: Request) -> None:
    """Return once the client has gone away."""
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


def create_app(config: QBReportConfig, *, services: Services | None = None) -> FastAPI:
    """Create the FastAPI application.

    When ``services`` is omitted they are built on startup around a shared
    ``httpx.AsyncClient`` that is closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if services is not None:
            app.state.services = services
            yield
            return

        async with httpx.AsyncClient(timeout=config.server.http_timeout) as http:
            app.state.services = build_services(config, http)
            logger.info(
                "qbreport ready (realm: %s, sandbox: %s)",
                config.quickbooks.realm_id, config.quickbooks.sandbox,
            )
            yield

    app = FastAPI(title="qbreport", version=__version__, lifespan=lifespan)

    def _services() -> Services:
        return app.state.services

    @app.get("/report")
    async def report(request: Request) -> Response:
        task = asyncio.ensure_future(_services().assembler.assemble())
        watcher = asyncio.ensure_future(wait_for_disconnect(request))
        try:
            await asyncio.wait({task, watcher}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            disconnected = not task.done()
            task.cancel()
            watcher.cancel()
            await asyncio.gather(task, watcher, return_exceptions=True)

        if disconnected:
            logger.info("client disconnected; report cancelled")
            return Response(status_code=500)

        try:
            result = task.result()
        except QBReportError as e:
            logger.error("unable to build report: %s", e)
            return Response(status_code=500)
        except Exception:
            logger.exception("unexpected error building report")
            return Response(status_code=500)
        return Response(content=result.model_dump_json(), media_type="application/json")

    @app.get("/login")
    async def login() -> RedirectResponse:
        url = _services().oauth.get_authorization_url(state=config.server.login_state)
        return RedirectResponse(url, status_code=303)

    @app.get("/callback")
    async def callback(
        code: str = "",
        state: str = "",
        realm_id: str = Query(default="", alias="realmId"),
    ) -> Response:
        logger.info("GET /callback (state=%s, realmId=%s)", state, realm_id)
        try:
            validate_callback(code, state, realm_id)
        except CallbackValidationError as e:
            logger.info("missing callback data: %s", ", ".join(e.missing))
            return Response(status_code=400)

        svc = _services()
        if realm_id != config.quickbooks.realm_id:
            logger.warning(
                "callback realm %s differs from configured realm %s",
                realm_id, config.quickbooks.realm_id,
            )

        try:
            token = await svc.oauth.exchange_code(code)
            await asyncio.to_thread(svc.store.put, token.refresh_token)
        except AuthExchangeError as e:
            logger.error("unable to exchange token: %s", e)
            return Response(status_code=500)
        except TokenStoreError as e:
            logger.error("unable to store refresh token: %s", e)
            return Response(status_code=500)

        logger.info("got token (%r); refresh token stored", token)
        return Response(status_code=200)

    @app.get("/health")
    async def health() -> dict[str, object]:
        return {
            "status": "ok",
            "version": __version__,
            "realm_id": config.quickbooks.realm_id,
            "sandbox": config.quickbooks.sandbox,
        }

    return app
