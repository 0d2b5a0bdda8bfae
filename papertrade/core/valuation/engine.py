from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from papertrade.core.ledger.schema import Account, Holding
from papertrade.core.marketdata.snapshot import QuoteSnapshot

# Returned by the percentage helpers when their denominator is zero.
ZERO_DENOMINATOR_PERCENT = 0.0


@dataclass(frozen=True)
class PositionValuation:
    symbol: str
    shares: float
    avg_cost: float
    cost_basis: float
    priced: bool
    price: float | None = None
    value: float = 0.0
    daily_change: float = 0.0
    daily_change_pct: float = 0.0
    unrealized_pl: float = 0.0
    unrealized_pl_pct: float = 0.0


@dataclass(frozen=True)
class PortfolioValuation:
    balance: float
    currency: str
    portfolio_value: float
    total_account_value: float
    daily_change_value: float
    daily_change_percent: float
    cost_basis: float
    unrealized_pl: float
    total_return_percent: float
    positions: list[PositionValuation] = field(default_factory=list)
    missing_symbols: list[str] = field(default_factory=list)


def position_value(holding: Holding, snapshot: QuoteSnapshot) -> float:
    return holding.shares * snapshot.price


def position_daily_change(holding: Holding, snapshot: QuoteSnapshot) -> float:
    return holding.shares * snapshot.change_abs


def position_unrealized_pl(holding: Holding, snapshot: QuoteSnapshot) -> float:
    return (snapshot.price - holding.avg_cost) * holding.shares


def portfolio_value(holdings: Iterable[Holding], snapshots: Mapping[str, QuoteSnapshot]) -> float:
    total = 0.0
    for holding in holdings:
        snapshot = snapshots.get(holding.symbol)
        if snapshot is not None:
            total += position_value(holding, snapshot)
    return total


def daily_change_value(holdings: Iterable[Holding], snapshots: Mapping[str, QuoteSnapshot]) -> float:
    total = 0.0
    for holding in holdings:
        snapshot = snapshots.get(holding.symbol)
        if snapshot is not None:
            total += position_daily_change(holding, snapshot)
    return total


def total_account_value(account: Account, snapshots: Mapping[str, QuoteSnapshot]) -> float:
    return account.balance + portfolio_value(account.holdings, snapshots)


def daily_change_percent(holdings: Iterable[Holding], snapshots: Mapping[str, QuoteSnapshot]) -> float:
    """Day change relative to the value the priced positions had at the open."""
    rows = list(holdings)
    value = portfolio_value(rows, snapshots)
    change = daily_change_value(rows, snapshots)
    return _percent(change, value - change)


def value_portfolio(account: Account, snapshots: Mapping[str, QuoteSnapshot]) -> PortfolioValuation:
    positions: list[PositionValuation] = []
    missing: list[str] = []
    for holding in account.holdings:
        snapshot = snapshots.get(holding.symbol)
        cost_basis = holding.shares * holding.avg_cost
        if snapshot is None:
            missing.append(holding.symbol)
            positions.append(
                PositionValuation(
                    symbol=holding.symbol,
                    shares=holding.shares,
                    avg_cost=holding.avg_cost,
                    cost_basis=cost_basis,
                    priced=False,
                )
            )
            continue
        unrealized = position_unrealized_pl(holding, snapshot)
        positions.append(
            PositionValuation(
                symbol=holding.symbol,
                shares=holding.shares,
                avg_cost=holding.avg_cost,
                cost_basis=cost_basis,
                priced=True,
                price=snapshot.price,
                value=position_value(holding, snapshot),
                daily_change=position_daily_change(holding, snapshot),
                daily_change_pct=snapshot.change_pct,
                unrealized_pl=unrealized,
                unrealized_pl_pct=_percent(unrealized, cost_basis),
            )
        )

    value = sum(p.value for p in positions)
    change = sum(p.daily_change for p in positions)
    priced_cost = sum(p.cost_basis for p in positions if p.priced)
    unrealized_total = sum(p.unrealized_pl for p in positions)
    return PortfolioValuation(
        balance=account.balance,
        currency=account.currency,
        portfolio_value=value,
        total_account_value=account.balance + value,
        daily_change_value=change,
        daily_change_percent=_percent(change, value - change),
        cost_basis=sum(p.cost_basis for p in positions),
        unrealized_pl=unrealized_total,
        total_return_percent=_percent(unrealized_total, priced_cost),
        positions=positions,
        missing_symbols=missing,
    )


def valuation_to_dict(valuation: PortfolioValuation) -> dict[str, Any]:
    return {
        "balance": valuation.balance,
        "currency": valuation.currency,
        "portfolio_value": valuation.portfolio_value,
        "total_account_value": valuation.total_account_value,
        "daily_change_value": valuation.daily_change_value,
        "daily_change_percent": valuation.daily_change_percent,
        "cost_basis": valuation.cost_basis,
        "unrealized_pl": valuation.unrealized_pl,
        "total_return_percent": valuation.total_return_percent,
        "missing_symbols": list(valuation.missing_symbols),
        "positions": [
            {
                "symbol": p.symbol,
                "shares": p.shares,
                "avg_cost": p.avg_cost,
                "cost_basis": p.cost_basis,
                "priced": p.priced,
                "price": p.price,
                "value": p.value,
                "daily_change": p.daily_change,
                "daily_change_pct": p.daily_change_pct,
                "unrealized_pl": p.unrealized_pl,
                "unrealized_pl_pct": p.unrealized_pl_pct,
            }
            for p in valuation.positions
        ],
    }


def _percent(numerator: float, denominator: float) -> float:
    if denominator == 0:
        return ZERO_DENOMINATOR_PERCENT
    return numerator / denominator * 100.0
