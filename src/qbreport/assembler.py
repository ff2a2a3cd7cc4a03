"""
Report assembler behind ``/report``.

Obtains one fresh access token per report, builds one QuickBooks client
from it, and runs the four queries (accounts, purchases, deposits,
classes) concurrently. The first failure cancels the remaining queries
and propagates; there is no partial report.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import date, timedelta
from typing import Any, TypeVar

from qbreport.auth.token_source import TokenSource
from qbreport.config import ReportConfig
from qbreport.connectors.quickbooks_connector import QuickBooksClient, QuickBooksClientFactory, quote
from qbreport.models.report import Account, Report

logger = logging.getLogger("qbreport.assembler")

T = TypeVar("T")


def date_window(today: date, days: int = 28) -> tuple[date, date]:
    """Trailing window of ``days`` days ending ``today``, as ``[start, stop)``."""
    return today - timedelta(days=days), today


def month_window(today: date) -> tuple[date, date]:
    """First and last day of the month containing ``today``."""
    first = today.replace(day=1)
    next_month = (first + timedelta(days=32)).replace(day=1)
    return first, next_month - timedelta(days=1)


def project_accounts(rows: list[dict[str, Any]], excluded: str) -> list[Account]:
    """Keep active bank accounts other than ``excluded`` and project them."""
    return [
        Account.from_qbo(row)
        for row in rows
        if row.get("AccountType") == "Bank"
        and row.get("Active") is True
        and row.get("Name") != excluded
    ]


async def gather_fail_fast(*aws: Awaitable[T]) -> list[T]:
    """Run awaitables concurrently; on the first error cancel the rest and re-raise."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class ReportAssembler:
    """Builds a :class:`Report` from QuickBooks.

    Usage::

        assembler = ReportAssembler(token_source, factory, realm_id, config.report)
        report = await assembler.assemble()
    """

    def __init__(
        self,
        token_source: TokenSource,
        client_factory: QuickBooksClientFactory,
        realm_id: str,
        config: ReportConfig | None = None,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.token_source = token_source
        self.client_factory = client_factory
        self.realm_id = realm_id
        self.config = config or ReportConfig()
        self._today = today

    async def client(self) -> QuickBooksClient:
        """Build a client from a freshly obtained access token."""
        token = await self.token_source.access_token()
        return self.client_factory.build(token.access_token, self.realm_id)

    # ------------------------------------------------------------------
    # Data fetchers
    # ------------------------------------------------------------------

    async def fetch_accounts(self, client: QuickBooksClient) -> list[Account]:
        excluded = self.config.excluded_account
        rows = await client.query(
            "Account",
            where=f"AccountType = 'Bank' AND Active = true AND Name != {quote(excluded)}",
        )
        accounts = project_accounts(rows, excluded)
        logger.info("Fetched %d bank accounts", len(accounts))
        return accounts

    async def fetch_purchases(self, client: QuickBooksClient) -> list[dict[str, Any]]:
        purchases = await client.query(
            "Purchase",
            where=self._txn_date_filter(),
            max_results=self.config.max_results,
        )
        logger.info("Fetched %d purchases", len(purchases))
        return purchases

    async def fetch_deposits(self, client: QuickBooksClient) -> list[dict[str, Any]]:
        deposits = await client.query(
            "Deposit",
            where=self._txn_date_filter(),
            max_results=self.config.max_results,
        )
        logger.info("Fetched %d deposits", len(deposits))
        return deposits

    async def fetch_classes(self, client: QuickBooksClient) -> list[dict[str, Any]]:
        classes = await client.query("Class", max_results=self.config.max_results)
        logger.info("Fetched %d classes", len(classes))
        return classes

    def _txn_date_filter(self) -> str:
        today = self._today()
        if self.config.period == "month":
            first, last = month_window(today)
            start, stop = first, last + timedelta(days=1)
        else:
            start, stop = date_window(today, self.config.window_days)
        return f"TxnDate >= '{start.isoformat()}' AND TxnDate < '{stop.isoformat()}'"

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def assemble(self) -> Report:
        """Fetch everything and merge it into one report.

        Raises:
            QBReportError: The first error encountered (token or query).
        """
        client = await self.client()
        accounts, purchases, deposits, classes = await gather_fail_fast(
            self.fetch_accounts(client),
            self.fetch_purchases(client),
            self.fetch_deposits(client),
            self.fetch_classes(client),
        )
        return Report(
            accounts=accounts,
            purchases=purchases,
            deposits=deposits,
            classes=classes,
        )
