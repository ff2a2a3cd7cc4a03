"""Tests for the report assembler."""

from __future__ import annotations

import asyncio
from datetime import date
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from qbreport.assembler import (
    ReportAssembler,
    date_window,
    gather_fail_fast,
    month_window,
    project_accounts,
)
from qbreport.auth.oauth2 import TokenData
from qbreport.config import ReportConfig
from qbreport.errors import AuthExchangeError, UpstreamQueryError
from qbreport.models.report import Account

TODAY = date(2024, 3, 15)

MOCK_ACCOUNTS = [
    {"Name": "Change Machine", "AccountType": "Bank", "Active": True, "CurrentBalance": 80.0},
    {"Name": "Main", "AccountType": "Bank", "Active": True, "CurrentBalance": 500.0},
    {"Name": "Old", "AccountType": "Bank", "Active": False, "CurrentBalance": 12.5},
]

MOCK_PURCHASE = {
    "Id": "101",
    "TxnDate": "2024-03-01",
    "TotalAmt": 250.00,
    "PaymentType": "CreditCard",
    "EntityRef": {"name": "Office Depot", "value": "42"},
}

MOCK_DEPOSIT = {
    "Id": "201",
    "TxnDate": "2024-03-04",
    "TotalAmt": 5000.00,
    "DepositToAccountRef": {"name": "Main", "value": "1"},
}

MOCK_CLASS = {"Id": "3", "Name": "Hack Denhac Day", "Active": True}


class FakeClient:
    """Records queries and answers from canned rows."""

    def __init__(self, rows: dict[str, list[dict[str, Any]]], fail: str | None = None) -> None:
        self.rows = rows
        self.fail = fail
        self.queries: dict[str, dict[str, Any]] = {}
        self.cancelled: list[str] = []

    async def query(self, entity: str, *, where: str | None = None, max_results: int | None = None) -> list:
        self.queries[entity] = {"where": where, "max_results": max_results}
        if entity == self.fail:
            raise UpstreamQueryError(entity, "HTTP 400", status_code=400)
        try:
            # let the failing query win the race
            await asyncio.sleep(0.05 if self.fail else 0)
        except asyncio.CancelledError:
            self.cancelled.append(entity)
            raise
        return self.rows.get(entity, [])


def _assembler(client: FakeClient, config: ReportConfig | None = None) -> tuple[ReportAssembler, MagicMock]:
    token_source = MagicMock()
    token_source.access_token = AsyncMock(
        return_value=TokenData(access_token="fresh_access", refresh_token="rt"),
    )
    factory = MagicMock()
    factory.build.return_value = client
    assembler = ReportAssembler(token_source, factory, "1234567890", config, today=lambda: TODAY)
    return assembler, factory


class TestWindows:
    def test_date_window(self) -> None:
        assert date_window(TODAY, 28) == (date(2024, 2, 16), date(2024, 3, 15))

    def test_date_window_crosses_year(self) -> None:
        assert date_window(date(2024, 1, 10), 28) == (date(2023, 12, 13), date(2024, 1, 10))

    def test_month_window(self) -> None:
        assert month_window(TODAY) == (date(2024, 3, 1), date(2024, 3, 31))
        assert month_window(date(2024, 2, 10)) == (date(2024, 2, 1), date(2024, 2, 29))
        assert month_window(date(2023, 12, 31)) == (date(2023, 12, 1), date(2023, 12, 31))


class TestProjection:
    def test_project_accounts(self) -> None:
        assert project_accounts(MOCK_ACCOUNTS, "Change Machine") == [
            Account(name="Main", current_balance=500.0),
        ]

    def test_project_skips_non_bank(self) -> None:
        rows = [{"Name": "Visa", "AccountType": "Credit Card", "Active": True, "CurrentBalance": -40.0}]
        assert project_accounts(rows, "Change Machine") == []

    def test_projection_serializes(self) -> None:
        accounts = project_accounts(MOCK_ACCOUNTS, "Change Machine")
        assert [a.model_dump() for a in accounts] == [{"name": "Main", "current_balance": 500.0}]


class TestReportAssembler:
    @pytest.mark.asyncio
    async def test_assemble(self) -> None:
        client = FakeClient({
            "Account": MOCK_ACCOUNTS,
            "Purchase": [MOCK_PURCHASE],
            "Deposit": [MOCK_DEPOSIT],
            "Class": [MOCK_CLASS],
        })
        assembler, factory = _assembler(client)

        report = await assembler.assemble()

        assert report.accounts == [Account(name="Main", current_balance=500.0)]
        assert report.purchases == [MOCK_PURCHASE]
        assert report.deposits == [MOCK_DEPOSIT]
        assert report.classes == [MOCK_CLASS]
        # one token, one client for all four queries
        assembler.token_source.access_token.assert_awaited_once()
        factory.build.assert_called_once_with("fresh_access", "1234567890")

    @pytest.mark.asyncio
    async def test_query_filters(self) -> None:
        client = FakeClient({})
        assembler, _ = _assembler(client)

        await assembler.assemble()

        assert client.queries["Account"] == {
            "where": "AccountType = 'Bank' AND Active = true AND Name != 'Change Machine'",
            "max_results": None,
        }
        window = "TxnDate >= '2024-02-16' AND TxnDate < '2024-03-15'"
        assert client.queries["Purchase"] == {"where": window, "max_results": 1000}
        assert client.queries["Deposit"] == {"where": window, "max_results": 1000}
        assert client.queries["Class"] == {"where": None, "max_results": 1000}

    @pytest.mark.asyncio
    async def test_month_period(self) -> None:
        client = FakeClient({})
        assembler, _ = _assembler(client, ReportConfig(period="month", max_results=250))

        await assembler.assemble()

        assert client.queries["Purchase"] == {
            "where": "TxnDate >= '2024-03-01' AND TxnDate < '2024-04-01'",
            "max_results": 250,
        }

    @pytest.mark.asyncio
    async def test_accounts_failure_aborts_report(self) -> None:
        client = FakeClient({"Purchase": [MOCK_PURCHASE]}, fail="Account")
        assembler, _ = _assembler(client)

        with pytest.raises(UpstreamQueryError) as exc_info:
            await assembler.assemble()
        assert exc_info.value.entity == "Account"
        assert sorted(client.cancelled) == ["Class", "Deposit", "Purchase"]

    @pytest.mark.asyncio
    async def test_token_failure_skips_queries(self) -> None:
        client = FakeClient({})
        assembler, factory = _assembler(client)
        assembler.token_source.access_token.side_effect = AuthExchangeError("invalid_grant", status_code=400)

        with pytest.raises(AuthExchangeError):
            await assembler.assemble()
        factory.build.assert_not_called()
        assert client.queries == {}


class TestGatherFailFast:
    @pytest.mark.asyncio
    async def test_results_in_order(self) -> None:
        async def value(v: int, delay: float) -> int:
            await asyncio.sleep(delay)
            return v

        assert await gather_fail_fast(value(1, 0.02), value(2, 0)) == [1, 2]
