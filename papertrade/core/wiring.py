from __future__ import annotations

from papertrade.config import Settings
from papertrade.core.access.gate import AccessGate, PinAuthenticationProvider
from papertrade.core.ledger.seed import load_seed_account
from papertrade.core.ledger.storage import JsonFileAccountStorage
from papertrade.core.ledger.store import LedgerStore
from papertrade.core.marketdata.feed import QuoteFeed
from papertrade.core.marketdata.providers import (
    LiveOrSimulatedQuoteProvider,
    QuoteProvider,
    SimulatedQuoteProvider,
    StooqQuoteProvider,
    YahooQuoteProvider,
)


def build_ledger(settings: Settings) -> LedgerStore:
    return LedgerStore(
        storage=JsonFileAccountStorage(settings.storage_path),
        seed=load_seed_account(settings.seed_path),
    )


def build_quote_provider(settings: Settings, *, seed: int | None = None) -> LiveOrSimulatedQuoteProvider:
    live: QuoteProvider = StooqQuoteProvider() if settings.quote_source == "stooq" else YahooQuoteProvider()
    return LiveOrSimulatedQuoteProvider(
        live=live,
        simulated=SimulatedQuoteProvider(seed=seed),
        mode=settings.quote_mode,
    )


def build_feed(settings: Settings, ledger: LedgerStore, *, seed: int | None = None) -> QuoteFeed:
    account = ledger.account()
    feed = QuoteFeed(provider=build_quote_provider(settings, seed=seed))
    feed.track(h.symbol for h in account.holdings)
    feed.track(account.watchlist)
    for config in account.price_configs.values():
        feed.apply_price_config(config)
    return feed


def build_gate(settings: Settings) -> AccessGate | None:
    if not settings.pin:
        return None
    return AccessGate([PinAuthenticationProvider.from_pin(settings.pin)])
