from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable

from papertrade.core.ledger.schema import Account, Holding, PriceRangeConfig, normalize_symbol
from papertrade.core.ledger.storage import AccountStorage

logger = logging.getLogger(__name__)

AccountObserver = Callable[[Account], None]


class LedgerStore:
    """Sole writer of the cash balance, holdings and watchlist.

    Every mutation is applied to a copy of the account, persisted through the
    storage port and only then made visible. A failed save leaves the current
    account untouched and the PersistenceError reaches the caller.
    """

    def __init__(self, storage: AccountStorage, seed: Account | None = None) -> None:
        self._storage = storage
        self._seed = (seed or Account()).model_copy(deep=True)
        self._lock = threading.RLock()
        self._observers: list[AccountObserver] = []

        loaded = storage.load()
        if loaded is None:
            loaded = self._seed.model_copy(deep=True)
            storage.save(loaded)
        self._account = loaded

    # -- read accessors -------------------------------------------------

    @property
    def balance(self) -> float:
        return self._account.balance

    @property
    def currency(self) -> str:
        return self._account.currency

    @property
    def holdings(self) -> list[Holding]:
        return [h.model_copy() for h in self._account.holdings]

    @property
    def watchlist(self) -> list[str]:
        return list(self._account.watchlist)

    def account(self) -> Account:
        with self._lock:
            return self._account.model_copy(deep=True)

    def get_holding(self, symbol: str) -> Holding | None:
        holding = self._account.holding_for(symbol)
        return holding.model_copy() if holding is not None else None

    def held_shares(self, symbol: str) -> float:
        holding = self._account.holding_for(symbol)
        return holding.shares if holding is not None else 0.0

    def price_config(self, symbol: str) -> PriceRangeConfig | None:
        return self._account.price_configs.get(normalize_symbol(symbol))

    # -- trading ---------------------------------------------------------

    def buy(self, symbol: str, shares: float, price_per_share: float) -> bool:
        symbol_norm = normalize_symbol(symbol)
        if not _valid_order(symbol_norm, shares, price_per_share):
            logger.info("Rejected buy %s x %s @ %s: invalid order", symbol_norm, shares, price_per_share)
            return False

        with self._lock:
            cost = shares * price_per_share
            if cost > self._account.balance:
                logger.info("Rejected buy %s: cost %.2f exceeds balance %.2f", symbol_norm, cost, self._account.balance)
                return False

            draft = self._account.model_copy(deep=True)
            existing = draft.holding_for(symbol_norm)
            if existing is None:
                draft.holdings.append(Holding(symbol=symbol_norm, shares=shares, avg_cost=price_per_share))
            else:
                total_shares = existing.shares + shares
                avg_cost = (existing.shares * existing.avg_cost + cost) / total_shares
                draft.holdings = _replace_holding(
                    draft.holdings,
                    Holding(symbol=symbol_norm, shares=total_shares, avg_cost=avg_cost),
                )
            draft.balance = draft.balance - cost
            self._commit(draft)
        logger.info("Bought %s x %s @ %s", symbol_norm, shares, price_per_share)
        return True

    def sell(self, symbol: str, shares: float, price_per_share: float) -> bool:
        symbol_norm = normalize_symbol(symbol)
        if not _valid_order(symbol_norm, shares, price_per_share):
            logger.info("Rejected sell %s x %s @ %s: invalid order", symbol_norm, shares, price_per_share)
            return False

        with self._lock:
            existing = self._account.holding_for(symbol_norm)
            if existing is None or existing.shares < shares:
                held = existing.shares if existing is not None else 0.0
                logger.info("Rejected sell %s x %s: only %s held", symbol_norm, shares, held)
                return False

            draft = self._account.model_copy(deep=True)
            remaining = existing.shares - shares
            if remaining == 0:
                draft.holdings = [h for h in draft.holdings if h.symbol != symbol_norm]
            else:
                draft.holdings = _replace_holding(
                    draft.holdings,
                    Holding(symbol=symbol_norm, shares=remaining, avg_cost=existing.avg_cost),
                )
            draft.balance = draft.balance + shares * price_per_share
            self._commit(draft)
        logger.info("Sold %s x %s @ %s", symbol_norm, shares, price_per_share)
        return True

    # -- administrative overrides --------------------------------------

    def set_direct_holding_shares(self, symbol: str, new_shares: float) -> bool:
        """Overwrite the share count of an existing holding; <= 0 removes it.

        Cost basis and balance are left alone. Symbols that are not held are
        ignored.
        """
        symbol_norm = normalize_symbol(symbol)
        if not symbol_norm or not _finite(new_shares):
            return False

        with self._lock:
            existing = self._account.holding_for(symbol_norm)
            if existing is None:
                return False
            draft = self._account.model_copy(deep=True)
            if new_shares <= 0:
                draft.holdings = [h for h in draft.holdings if h.symbol != symbol_norm]
            else:
                draft.holdings = _replace_holding(
                    draft.holdings,
                    Holding(symbol=symbol_norm, shares=new_shares, avg_cost=existing.avg_cost),
                )
            self._commit(draft)
        return True

    def set_balance(self, balance: float) -> bool:
        if not _finite(balance):
            return False
        with self._lock:
            draft = self._account.model_copy(deep=True)
            draft.balance = float(balance)
            self._commit(draft)
        return True

    def set_currency(self, currency: str) -> bool:
        label = str(currency or "").strip()
        if not label:
            return False
        with self._lock:
            draft = self._account.model_copy(deep=True)
            draft.currency = label
            self._commit(draft)
        return True

    def set_price_config(self, symbol: str, price: float, min_price: float, max_price: float) -> bool:
        try:
            config = PriceRangeConfig(symbol=symbol, price=price, min_price=min_price, max_price=max_price)
        except ValueError as exc:
            logger.info("Rejected price config for %s: %s", symbol, exc)
            return False
        with self._lock:
            draft = self._account.model_copy(deep=True)
            draft.price_configs[config.symbol] = config
            self._commit(draft)
        return True

    def clear_price_config(self, symbol: str) -> bool:
        symbol_norm = normalize_symbol(symbol)
        with self._lock:
            if symbol_norm not in self._account.price_configs:
                return False
            draft = self._account.model_copy(deep=True)
            draft.price_configs.pop(symbol_norm)
            self._commit(draft)
        return True

    def reset_account(self) -> None:
        """Replace the whole account with the seed. Callers confirm with the user first."""
        with self._lock:
            self._commit(self._seed.model_copy(deep=True))
        logger.info("Account reset to seed")

    def toggle_watchlist(self, symbol: str) -> bool:
        """Return True when the symbol is on the watchlist after the call."""
        symbol_norm = normalize_symbol(symbol)
        if not symbol_norm:
            return False
        with self._lock:
            draft = self._account.model_copy(deep=True)
            watched = set(draft.watchlist)
            if symbol_norm in watched:
                watched.discard(symbol_norm)
            else:
                watched.add(symbol_norm)
            draft.watchlist = sorted(watched)
            self._commit(draft)
            return symbol_norm in watched

    # -- observers -------------------------------------------------------

    def subscribe(self, callback: AccountObserver) -> Callable[[], None]:
        self._observers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._observers:
                self._observers.remove(callback)

        return _unsubscribe

    def _commit(self, draft: Account) -> None:
        draft.holdings = sorted(draft.holdings, key=lambda h: h.symbol)
        self._storage.save(draft)
        self._account = draft
        for callback in list(self._observers):
            try:
                callback(draft.model_copy(deep=True))
            except Exception:
                logger.exception("Account observer %r failed", callback)


def _replace_holding(holdings: list[Holding], updated: Holding) -> list[Holding]:
    return [updated if h.symbol == updated.symbol else h for h in holdings]


def _finite(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def _valid_order(symbol: str, shares: float, price_per_share: float) -> bool:
    if not symbol:
        return False
    if not _finite(shares) or shares <= 0:
        return False
    if not _finite(price_per_share) or price_per_share < 0:
        return False
    return True
