from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable, Mapping
from types import MappingProxyType

from papertrade.core.ledger.schema import PriceRangeConfig, normalize_symbol
from papertrade.core.marketdata.providers import QuoteProvider, QuoteProviderError
from papertrade.core.marketdata.snapshot import FALLBACK_SNAPSHOTS, QuoteSnapshot, reprice

logger = logging.getLogger(__name__)

SnapshotObserver = Callable[[Mapping[str, QuoteSnapshot]], None]


class QuoteFeed:
    """Latest snapshot per tracked symbol.

    Each tick swaps in a whole new mapping, so readers holding the result of
    snapshots() never see a half-updated tick.
    """

    def __init__(
        self,
        provider: QuoteProvider,
        symbols: Iterable[str] | None = None,
        initial: Iterable[QuoteSnapshot] = FALLBACK_SNAPSHOTS,
    ) -> None:
        self.provider = provider
        self._lock = threading.RLock()
        self._observers: list[SnapshotObserver] = []
        self._configs: dict[str, PriceRangeConfig] = {}
        self._latest: Mapping[str, QuoteSnapshot] = MappingProxyType({s.symbol: s for s in initial})
        tracked = [normalize_symbol(s) for s in symbols] if symbols is not None else list(self._latest)
        self._symbols: list[str] = sorted({s for s in tracked if s})

    @property
    def symbols(self) -> list[str]:
        return list(self._symbols)

    def get_snapshot(self, symbol: str) -> QuoteSnapshot | None:
        return self._latest.get(normalize_symbol(symbol))

    def snapshots(self) -> Mapping[str, QuoteSnapshot]:
        return self._latest

    def track(self, symbols: Iterable[str]) -> None:
        # Lock-free: called from ledger observers while the ledger lock is held.
        merged = set(self._symbols)
        merged.update(normalize_symbol(s) for s in symbols if normalize_symbol(s))
        self._symbols = sorted(merged)

    def tick(self) -> Mapping[str, QuoteSnapshot]:
        with self._lock:
            try:
                fresh = self.provider.fetch_snapshots(self._symbols, self._latest)
            except QuoteProviderError as exc:
                logger.warning("Quote tick failed, keeping previous snapshots: %s", exc)
                return self._latest
            self._publish(fresh)
            return self._latest

    def apply_price_config(self, config: PriceRangeConfig) -> QuoteSnapshot | None:
        """Pin a symbol to a configured price and keep later simulated ticks inside its band."""
        with self._lock:
            configure = getattr(self.provider, "configure", None)
            if callable(configure):
                configure(config)
            self._configs[config.symbol] = config
            current = self._latest.get(config.symbol)
            if current is None:
                return None
            pinned = reprice(current, config.price, source="simulated")
            self._publish({config.symbol: pinned})
            return pinned

    def sync_price_configs(self, configs: Mapping[str, PriceRangeConfig]) -> None:
        """Make the provider's price bands match the account's; dropped bands stop clamping."""
        # Lock-free for the same reason as track().
        configure = getattr(self.provider, "configure", None)
        clear_config = getattr(self.provider, "clear_config", None)
        for symbol in set(self._configs) - set(configs):
            if callable(clear_config):
                clear_config(symbol)
        for symbol, config in configs.items():
            if self._configs.get(symbol) != config and callable(configure):
                configure(config)
        self._configs = dict(configs)

    def subscribe(self, callback: SnapshotObserver) -> Callable[[], None]:
        self._observers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return _unsubscribe

    def _publish(self, fresh: Mapping[str, QuoteSnapshot]) -> None:
        merged = dict(self._latest)
        merged.update(fresh)
        self._latest = MappingProxyType(merged)
        for callback in list(self._observers):
            try:
                callback(self._latest)
            except Exception:
                logger.exception("Snapshot observer %r failed", callback)
