"""
QuickBooks Online Connector — query client for the QBO Accounting API.

Runs SQL-like queries against the QBO REST API v3 for a single company
(realm) using an already obtained access token.

QuickBooks API docs:
  https://developer.intuit.com/app/developer/qbo/docs/api/accounting/all-entities
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from qbreport.errors import UpstreamQueryError

logger = logging.getLogger("qbreport.connectors.quickbooks")

# QBO query API caps a single response at 1000 rows
MAX_RESULTS_CAP = 1000


def build_query(entity: str, where: str | None = None, max_results: int | None = None) -> str:
    """Build a QBO query string.

    >>> build_query("Class", max_results=1000)
    'SELECT * FROM Class MAXRESULTS 1000'
    """
    query = f"SELECT * FROM {entity}"
    if where:
        query += f" WHERE {where}"
    if max_results is not None:
        query += f" MAXRESULTS {min(max_results, MAX_RESULTS_CAP)}"
    return query


def quote(value: str) -> str:
    """Quote a literal for a QBO query (single quotes are backslash-escaped)."""
    return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"


class QuickBooksClient:
    """Authenticated QuickBooks Online client for one realm.

    Usage::

        client = factory.build(token.access_token, realm_id)
        accounts = await client.query("Account", where="Active = true")
    """

    name = "quickbooks"

    def __init__(
        self,
        http: httpx.AsyncClient,
        access_token: str,
        realm_id: str,
        *,
        base_url: str,
    ) -> None:
        self._http = http
        self._access_token = access_token
        self.realm_id = realm_id
        self._base_url = base_url.rstrip("/")

    @property
    def company_url(self) -> str:
        return f"{self._base_url}/v3/company/{self.realm_id}"

    async def _api_get(self, endpoint: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """Make an authenticated GET request to the QBO API."""
        url = f"{self.company_url}/{endpoint}"
        headers = {
            "Authorization": f"Bearer {self._access_token}",
            "Accept": "application/json",
        }
        resp = await self._http.get(url, headers=headers, params=params)
        resp.raise_for_status()
        return resp.json()

    async def query(
        self,
        entity: str,
        *,
        where: str | None = None,
        max_results: int | None = None,
    ) -> list[dict[str, Any]]:
        """Execute a QBO query and return the ``entity`` rows.

        Raises:
            UpstreamQueryError: If the request fails or the response is unusable.
        """
        query = build_query(entity, where, max_results)
        logger.debug("QBO query: %s", query)
        try:
            data = await self._api_get("query", params={"query": query})
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise UpstreamQueryError(entity, _fault_detail(e.response), status_code=status) from e
        except httpx.RequestError as e:
            raise UpstreamQueryError(entity, str(e)) from e
        except ValueError as e:
            raise UpstreamQueryError(entity, f"invalid JSON response: {e}") from e

        response = data.get("QueryResponse") if isinstance(data, dict) else None
        if not isinstance(response, dict):
            raise UpstreamQueryError(entity, "response has no QueryResponse")

        rows = response.get(entity, [])
        if max_results is not None and len(rows) >= min(max_results, MAX_RESULTS_CAP):
            logger.warning(
                "%s query returned %d rows (the result cap); results may be truncated",
                entity, len(rows),
            )
        return rows


class QuickBooksClientFactory:
    """Builds :class:`QuickBooksClient` instances from fresh access tokens.

    Construction does no network I/O. The factory owns the pooled
    ``httpx.AsyncClient`` shared by the clients it builds; nothing else
    is cached between requests.
    """

    def __init__(self, http: httpx.AsyncClient, *, base_url: str) -> None:
        self._http = http
        self.base_url = base_url

    def build(self, access_token: str, realm_id: str) -> QuickBooksClient:
        return QuickBooksClient(self._http, access_token, realm_id, base_url=self.base_url)


def _fault_detail(resp: httpx.Response) -> str:
    """Summarize a QBO ``Fault`` response body."""
    try:
        body = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}"
    fault = body.get("Fault") if isinstance(body, dict) else None
    errors = fault.get("Error") if isinstance(fault, dict) else None
    if isinstance(errors, list) and errors:
        first = errors[0]
        return f"HTTP {resp.status_code}: {first.get('Message', '')} {first.get('Detail', '')}".strip()
    return f"HTTP {resp.status_code}"
