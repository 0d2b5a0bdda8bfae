from __future__ import annotations

import io
import logging
import math
import random
from collections.abc import Mapping, Sequence
from typing import Any, Protocol

import pandas as pd
import requests

from papertrade.core.ledger.schema import PriceRangeConfig, normalize_symbol
from papertrade.core.marketdata.snapshot import FALLBACK_SNAPSHOTS, QuoteSnapshot, make_snapshot, reprice

logger = logging.getLogger(__name__)

_YAHOO_HEADERS = {"User-Agent": "Mozilla/5.0"}
_FALLBACK_BY_SYMBOL = {snap.symbol: snap for snap in FALLBACK_SNAPSHOTS}


class QuoteProviderError(RuntimeError):
    pass


class QuoteProvider(Protocol):
    def fetch_snapshots(
        self,
        symbols: Sequence[str],
        previous: Mapping[str, QuoteSnapshot],
    ) -> dict[str, QuoteSnapshot]:
        """Return the newest snapshot per symbol; symbols it cannot price are omitted."""


class SimulatedQuoteProvider:
    """Random walk around the previous price, optionally pinned to a price band."""

    def __init__(self, seed: int | None = None, volatility: float = 0.0015) -> None:
        self.rng = random.Random(seed)
        self.volatility = float(volatility)
        self.configs: dict[str, PriceRangeConfig] = {}

    def configure(self, config: PriceRangeConfig) -> None:
        self.configs[config.symbol] = config

    def clear_config(self, symbol: str) -> None:
        self.configs.pop(normalize_symbol(symbol), None)

    def fetch_snapshots(
        self,
        symbols: Sequence[str],
        previous: Mapping[str, QuoteSnapshot],
    ) -> dict[str, QuoteSnapshot]:
        result: dict[str, QuoteSnapshot] = {}
        for symbol in symbols:
            symbol_norm = normalize_symbol(symbol)
            if not symbol_norm:
                continue
            base = previous.get(symbol_norm) or _FALLBACK_BY_SYMBOL.get(symbol_norm) or _seeded_snapshot(symbol_norm)
            result[symbol_norm] = self.step(base)
        return result

    def step(self, snapshot: QuoteSnapshot) -> QuoteSnapshot:
        move = self.rng.uniform(-self.volatility, self.volatility)
        price = max(0.01, snapshot.price * (1.0 + move))
        config = self.configs.get(snapshot.symbol)
        if config is not None:
            price = config.clamp(price)
        volume = snapshot.volume + self.rng.randint(0, 4999)
        return reprice(snapshot, price, volume=volume, source="simulated")


class YahooQuoteProvider:
    """Yahoo v7 quote endpoint, one request for the whole symbol list."""

    BASE_URLS = (
        "https://query1.finance.yahoo.com/v7/finance/quote",
        "https://query2.finance.yahoo.com/v7/finance/quote",
    )

    def __init__(self, session: requests.Session | None = None, timeout: float = 10.0) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout

    def fetch_snapshots(
        self,
        symbols: Sequence[str],
        previous: Mapping[str, QuoteSnapshot],
    ) -> dict[str, QuoteSnapshot]:
        wanted = [normalize_symbol(s) for s in symbols if normalize_symbol(s)]
        if not wanted:
            return {}

        payload = None
        last_error: Exception | None = None
        for base_url in self.BASE_URLS:
            try:
                response = self.session.get(
                    base_url,
                    params={"symbols": ",".join(wanted)},
                    timeout=self.timeout,
                    headers=_YAHOO_HEADERS,
                )
                response.raise_for_status()
                payload = response.json() or {}
                break
            except Exception as exc:  # noqa: PERF203
                last_error = exc
                continue
        if payload is None:
            raise QuoteProviderError(f"Yahoo quotes unavailable: {last_error}")

        results = (payload.get("quoteResponse") or {}).get("result") or []
        snapshots: dict[str, QuoteSnapshot] = {}
        for item in results:
            snapshot = _snapshot_from_yahoo(item, previous)
            if snapshot is not None:
                snapshots[snapshot.symbol] = snapshot
        if not snapshots:
            raise QuoteProviderError("Yahoo returned no usable quotes.")
        return snapshots


class StooqQuoteProvider:
    """Stooq light quote CSV (symbol, date, time, open, high, low, close, volume)."""

    BASE_URL = "https://stooq.com/q/l/"

    def __init__(self, session: requests.Session | None = None, timeout: float = 10.0) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout

    def fetch_snapshots(
        self,
        symbols: Sequence[str],
        previous: Mapping[str, QuoteSnapshot],
    ) -> dict[str, QuoteSnapshot]:
        wanted = {stooq_symbol(s): normalize_symbol(s) for s in symbols if normalize_symbol(s)}
        if not wanted:
            return {}
        try:
            response = self.session.get(
                self.BASE_URL,
                params={"s": ",".join(wanted), "f": "sd2t2ohlcv", "e": "csv"},
                timeout=self.timeout,
                headers=_YAHOO_HEADERS,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise QuoteProviderError(f"Stooq quotes unavailable: {exc}") from exc

        try:
            frame = parse_stooq_quotes(response.text)
        except ValueError as exc:
            raise QuoteProviderError(f"Stooq returned an unreadable quote CSV: {exc}") from exc
        snapshots: dict[str, QuoteSnapshot] = {}
        for row in frame.itertuples(index=False):
            symbol = wanted.get(str(row.symbol).upper())
            if symbol is None:
                continue
            prior = previous.get(symbol) or _FALLBACK_BY_SYMBOL.get(symbol)
            snapshots[symbol] = make_snapshot(
                symbol,
                price=float(row.close),
                open_price=float(row.open),
                day_high=float(row.high),
                day_low=float(row.low),
                volume=0.0 if pd.isna(row.volume) else float(row.volume),
                short_name=prior.short_name if prior is not None else symbol,
                source="live",
            )
        if not snapshots:
            raise QuoteProviderError("Stooq returned no usable quotes.")
        return snapshots


class LiveOrSimulatedQuoteProvider:
    """Prefer live quotes, fall back to the random walk for anything live cannot price."""

    def __init__(self, live: QuoteProvider, simulated: SimulatedQuoteProvider | None = None, mode: str = "live") -> None:
        self.live = live
        self.simulated = simulated or SimulatedQuoteProvider()
        self.mode = str(mode or "live").strip().lower()

    def configure(self, config: PriceRangeConfig) -> None:
        self.simulated.configure(config)

    def clear_config(self, symbol: str) -> None:
        self.simulated.clear_config(symbol)

    def fetch_snapshots(
        self,
        symbols: Sequence[str],
        previous: Mapping[str, QuoteSnapshot],
    ) -> dict[str, QuoteSnapshot]:
        if self.mode == "simulated":
            return self.simulated.fetch_snapshots(symbols, previous)
        try:
            snapshots = self.live.fetch_snapshots(symbols, previous)
        except QuoteProviderError as exc:
            logger.warning("Live quotes failed, using simulated prices: %s", exc)
            return self.simulated.fetch_snapshots(symbols, previous)

        missing = [s for s in symbols if normalize_symbol(s) not in snapshots]
        if missing:
            snapshots.update(self.simulated.fetch_snapshots(missing, previous))
        return snapshots


def stooq_symbol(symbol: str) -> str:
    symbol_norm = normalize_symbol(symbol)
    if symbol_norm.isalpha():
        return f"{symbol_norm}.US"
    return symbol_norm


def parse_stooq_quotes(text: str) -> pd.DataFrame:
    columns = ["symbol", "open", "high", "low", "close", "volume"]
    if not str(text or "").strip():
        return pd.DataFrame(columns=columns)
    frame = pd.read_csv(io.StringIO(text))
    frame = frame.rename(columns={col: str(col).strip().lower() for col in frame.columns})
    if not set(columns).issubset(frame.columns):
        return pd.DataFrame(columns=columns)
    for col in ["open", "high", "low", "close", "volume"]:
        frame[col] = pd.to_numeric(frame[col], errors="coerce")
    frame = frame.dropna(subset=["open", "high", "low", "close"])
    return frame[columns].reset_index(drop=True)


def _snapshot_from_yahoo(item: Any, previous: Mapping[str, QuoteSnapshot]) -> QuoteSnapshot | None:
    if not isinstance(item, dict):
        return None
    symbol = normalize_symbol(item.get("symbol"))
    price = _to_optional_float(item.get("regularMarketPrice"))
    if not symbol or price is None:
        return None
    prior = previous.get(symbol)
    open_price = _to_optional_float(item.get("regularMarketOpen"))
    if open_price is None:
        open_price = prior.open if prior is not None else price
    return make_snapshot(
        symbol,
        price=price,
        open_price=open_price,
        day_high=_to_optional_float(item.get("regularMarketDayHigh")),
        day_low=_to_optional_float(item.get("regularMarketDayLow")),
        volume=_to_optional_float(item.get("regularMarketVolume")) or 0.0,
        short_name=str(item.get("shortName") or item.get("longName") or symbol),
        source="live",
    )


def _seeded_snapshot(symbol: str) -> QuoteSnapshot:
    symbol_seed = sum(ord(ch) for ch in symbol)
    base = 90.0 + float(symbol_seed % 120)
    return make_snapshot(
        symbol,
        price=base,
        open_price=base,
        volume=float(800_000 + (symbol_seed % 300) * 1000),
        source="simulated",
    )


def _to_optional_float(value: Any) -> float | None:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None
