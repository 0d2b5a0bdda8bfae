from __future__ import annotations

from pathlib import Path

from papertrade.core.ledger.scenario import Scenario, apply_scenario, load_scenario
from papertrade.core.ledger.schema import Account, Holding
from papertrade.core.ledger.storage import MemoryAccountStorage
from papertrade.core.ledger.store import LedgerStore


def _ledger() -> LedgerStore:
    seed = Account(balance=160.0, holdings=[Holding(symbol="AAPL", shares=2, avg_cost=175.5)])
    return LedgerStore(storage=MemoryAccountStorage(), seed=seed)


def test_apply_scenario_reaches_exact_state() -> None:
    ledger = _ledger()
    ledger.buy("AAPL", 0.5, 100.0)

    apply_scenario(
        ledger,
        {
            "balance": 5000,
            "currency": "$",
            "holdings": [
                {"symbol": "AAPL", "shares": 10, "avg_cost": 175.5},
                {"symbol": "nvda", "shares": 4, "avg_cost": 650.25},
            ],
            "watchlist": ["msft", "AMD"],
        },
    )

    account = ledger.account()
    assert account.balance == 5000.0
    assert account.currency == "$"
    assert [(h.symbol, h.shares, h.avg_cost) for h in account.holdings] == [
        ("AAPL", 10.0, 175.5),
        ("NVDA", 4.0, 650.25),
    ]
    assert account.watchlist == ["AMD", "MSFT"]


def test_scenario_without_reset_replaces_cost_basis() -> None:
    ledger = _ledger()
    ledger.toggle_watchlist("MSFT")

    apply_scenario(
        ledger,
        Scenario(reset=False, holdings=[Holding(symbol="AAPL", shares=1, avg_cost=200.0)], watchlist=["MSFT"]),
    )

    holding = ledger.get_holding("AAPL")
    assert holding is not None
    assert (holding.shares, holding.avg_cost) == (1.0, 200.0)
    assert ledger.balance == 160.0
    assert ledger.watchlist == ["MSFT"]


def test_load_scenario_from_yaml(tmp_path: Path) -> None:
    path = tmp_path / "scenario.yaml"
    path.write_text(
        "reset: false\nbalance: 42.5\nholdings:\n  - symbol: tsla\n    shares: 3\n    avg_cost: 210\n",
        encoding="utf-8",
    )

    scenario = load_scenario(path)
    assert scenario.reset is False
    assert scenario.balance == 42.5
    assert scenario.holdings[0].symbol == "TSLA"
    assert scenario.watchlist == []
