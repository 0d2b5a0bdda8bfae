from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from papertrade.core.ledger.schema import Holding
from papertrade.core.ledger.store import LedgerStore


class Scenario(BaseModel):
    reset: bool = True
    balance: float | None = None
    currency: str | None = None
    holdings: list[Holding] = Field(default_factory=list)
    watchlist: list[str] = Field(default_factory=list)


def load_scenario(path: str | Path) -> Scenario:
    with Path(path).open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    return Scenario.model_validate(raw)


def apply_scenario(ledger: LedgerStore, scenario: Scenario | dict[str, Any]) -> None:
    """Drive the ledger into a scenario using only its public operations.

    New positions are opened with a buy at the scenario cost after topping up
    cash, so avg_cost comes out exactly as written; the balance is pinned last.
    """
    plan = scenario if isinstance(scenario, Scenario) else Scenario.model_validate(scenario)
    if plan.reset:
        ledger.reset_account()
    if plan.currency:
        ledger.set_currency(plan.currency)

    starting_balance = ledger.balance
    for holding in plan.holdings:
        current = ledger.get_holding(holding.symbol)
        if current is not None and current.avg_cost == holding.avg_cost:
            ledger.set_direct_holding_shares(holding.symbol, holding.shares)
            continue
        if current is not None:
            ledger.set_direct_holding_shares(holding.symbol, 0)
        cost = holding.shares * holding.avg_cost
        ledger.set_balance(max(ledger.balance, 0.0) + cost)
        if not ledger.buy(holding.symbol, holding.shares, holding.avg_cost):
            raise RuntimeError(f"scenario buy failed for {holding.symbol}")

    watched = set(ledger.watchlist)
    for symbol in plan.watchlist:
        if symbol.strip().upper() not in watched:
            ledger.toggle_watchlist(symbol)
            watched.add(symbol.strip().upper())

    ledger.set_balance(starting_balance if plan.balance is None else plan.balance)
