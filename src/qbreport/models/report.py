"""
The consolidated report served by ``/report``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class Account(BaseModel):
    """A bank account and its current balance."""

    name: str
    current_balance: float = 0.0

    @classmethod
    def from_qbo(cls, data: dict[str, Any]) -> Account:
        return cls(
            name=data.get("Name", ""),
            current_balance=float(data.get("CurrentBalance") or 0.0),
        )


class Report(BaseModel):
    """Accounts, recent purchases and deposits, and budget classes.

    Purchases, deposits and classes are the QuickBooks objects as returned
    by the API (``Id``, ``TxnDate``, ``TotalAmt``, ...).
    """

    accounts: list[Account] = Field(default_factory=list)
    purchases: list[dict[str, Any]] = Field(default_factory=list)
    deposits: list[dict[str, Any]] = Field(default_factory=list)
    classes: list[dict[str, Any]] = Field(default_factory=list)

    def to_json(self) -> str:
        return self.model_dump_json(indent=2)
