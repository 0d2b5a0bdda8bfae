from __future__ import annotations

from papertrade.core.valuation.engine import (
    ZERO_DENOMINATOR_PERCENT,
    PortfolioValuation,
    PositionValuation,
    daily_change_percent,
    daily_change_value,
    portfolio_value,
    position_daily_change,
    position_unrealized_pl,
    position_value,
    total_account_value,
    valuation_to_dict,
    value_portfolio,
)
from papertrade.core.valuation.monitor import PortfolioMonitor

__all__ = [
    "PortfolioMonitor",
    "PortfolioValuation",
    "PositionValuation",
    "ZERO_DENOMINATOR_PERCENT",
    "daily_change_percent",
    "daily_change_value",
    "portfolio_value",
    "position_daily_change",
    "position_unrealized_pl",
    "position_value",
    "total_account_value",
    "valuation_to_dict",
    "value_portfolio",
]
