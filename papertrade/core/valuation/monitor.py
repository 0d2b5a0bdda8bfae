from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping

from papertrade.core.ledger.schema import Account
from papertrade.core.ledger.store import LedgerStore
from papertrade.core.marketdata.feed import QuoteFeed
from papertrade.core.marketdata.snapshot import QuoteSnapshot
from papertrade.core.valuation.engine import PortfolioValuation, value_portfolio

logger = logging.getLogger(__name__)

ValuationObserver = Callable[[PortfolioValuation], None]


class PortfolioMonitor:
    """Re-values the portfolio whenever the ledger changes or the feed ticks."""

    def __init__(self, ledger: LedgerStore, feed: QuoteFeed) -> None:
        self.ledger = ledger
        self.feed = feed
        self._lock = threading.Lock()
        self._observers: list[ValuationObserver] = []
        self._latest: PortfolioValuation | None = None
        self._unsubscribers = [
            ledger.subscribe(self._on_account),
            feed.subscribe(self._on_snapshots),
        ]
        feed.track(h.symbol for h in ledger.holdings)
        feed.track(ledger.watchlist)
        feed.sync_price_configs(ledger.account().price_configs)

    @property
    def latest(self) -> PortfolioValuation:
        return self._latest or self.refresh()

    def refresh(self) -> PortfolioValuation:
        account = self.ledger.account()
        snapshots = self.feed.snapshots()
        with self._lock:
            return self._value(account, snapshots)

    def tick(self) -> PortfolioValuation:
        self.feed.tick()
        return self.latest

    def run(
        self,
        interval_seconds: float,
        *,
        max_ticks: int | None = None,
        stop_event: threading.Event | None = None,
    ) -> PortfolioValuation:
        stop = stop_event or threading.Event()
        ticks = 0
        valuation = self.refresh()
        while not stop.is_set():
            valuation = self.tick()
            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break
            stop.wait(max(0.0, float(interval_seconds)))
        return valuation

    def subscribe(self, callback: ValuationObserver) -> Callable[[], None]:
        self._observers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return _unsubscribe

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def _on_account(self, account: Account) -> None:
        self.feed.track(h.symbol for h in account.holdings)
        self.feed.track(account.watchlist)
        self.feed.sync_price_configs(account.price_configs)
        with self._lock:
            self._value(account, self.feed.snapshots())

    def _on_snapshots(self, snapshots: Mapping[str, QuoteSnapshot]) -> None:
        account = self.ledger.account()
        with self._lock:
            self._value(account, snapshots)

    def _value(self, account: Account, snapshots: Mapping[str, QuoteSnapshot]) -> PortfolioValuation:
        valuation = value_portfolio(account, snapshots)
        self._latest = valuation
        for callback in list(self._observers):
            try:
                callback(valuation)
            except Exception:
                logger.exception("Valuation observer %r failed", callback)
        return valuation
