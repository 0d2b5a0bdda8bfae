from __future__ import annotations

from papertrade.core.marketdata.feed import QuoteFeed
from papertrade.core.marketdata.history import (
    RANGE_MAPPING,
    HistoryPoint,
    HistorySeries,
    fetch_history,
    generate_history,
    history_to_dict,
)
from papertrade.core.marketdata.providers import (
    LiveOrSimulatedQuoteProvider,
    QuoteProvider,
    QuoteProviderError,
    SimulatedQuoteProvider,
    StooqQuoteProvider,
    YahooQuoteProvider,
)
from papertrade.core.marketdata.snapshot import (
    FALLBACK_SNAPSHOTS,
    QuoteSnapshot,
    change_from_open,
    make_snapshot,
    reprice,
    snapshot_to_dict,
)

__all__ = [
    "FALLBACK_SNAPSHOTS",
    "HistoryPoint",
    "HistorySeries",
    "LiveOrSimulatedQuoteProvider",
    "QuoteFeed",
    "QuoteProvider",
    "QuoteProviderError",
    "QuoteSnapshot",
    "RANGE_MAPPING",
    "SimulatedQuoteProvider",
    "StooqQuoteProvider",
    "YahooQuoteProvider",
    "change_from_open",
    "fetch_history",
    "generate_history",
    "history_to_dict",
    "make_snapshot",
    "reprice",
    "snapshot_to_dict",
]
