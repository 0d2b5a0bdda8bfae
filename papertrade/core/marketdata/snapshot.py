from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any

from papertrade.core.orchestration.time_utils import now_utc


@dataclass(frozen=True)
class QuoteSnapshot:
    symbol: str
    price: float
    open: float
    day_high: float
    day_low: float
    volume: float
    change_abs: float
    change_pct: float
    short_name: str = ""
    source: str = "fallback"  # live | simulated | fallback
    as_of: datetime | None = None


def make_snapshot(
    symbol: str,
    *,
    price: float,
    open_price: float,
    day_high: float | None = None,
    day_low: float | None = None,
    volume: float = 0.0,
    short_name: str = "",
    source: str = "fallback",
    as_of: datetime | None = None,
) -> QuoteSnapshot:
    change_abs, change_pct = change_from_open(price=price, open_price=open_price)
    high = max(price, open_price) if day_high is None else max(day_high, price)
    low = min(price, open_price) if day_low is None else min(day_low, price)
    return QuoteSnapshot(
        symbol=str(symbol or "").strip().upper(),
        price=float(price),
        open=float(open_price),
        day_high=float(high),
        day_low=float(low),
        volume=float(volume),
        change_abs=change_abs,
        change_pct=change_pct,
        short_name=short_name or str(symbol or "").strip().upper(),
        source=source,
        as_of=as_of or now_utc(),
    )


def reprice(snapshot: QuoteSnapshot, price: float, *, volume: float | None = None, source: str | None = None) -> QuoteSnapshot:
    change_abs, change_pct = change_from_open(price=price, open_price=snapshot.open)
    return replace(
        snapshot,
        price=float(price),
        day_high=max(snapshot.day_high, price),
        day_low=min(snapshot.day_low, price),
        volume=snapshot.volume if volume is None else float(volume),
        change_abs=change_abs,
        change_pct=change_pct,
        source=source or snapshot.source,
        as_of=now_utc(),
    )


def change_from_open(*, price: float, open_price: float) -> tuple[float, float]:
    change_abs = float(price) - float(open_price)
    change_pct = (change_abs / float(open_price)) * 100.0 if open_price != 0 else 0.0
    return change_abs, change_pct


def snapshot_to_dict(snapshot: QuoteSnapshot) -> dict[str, Any]:
    return {
        "symbol": snapshot.symbol,
        "short_name": snapshot.short_name,
        "price": snapshot.price,
        "open": snapshot.open,
        "day_high": snapshot.day_high,
        "day_low": snapshot.day_low,
        "volume": snapshot.volume,
        "change_abs": snapshot.change_abs,
        "change_pct": snapshot.change_pct,
        "source": snapshot.source,
        "as_of": snapshot.as_of.astimezone(timezone.utc).isoformat() if isinstance(snapshot.as_of, datetime) else None,
    }


def _fallback(symbol: str, name: str, price: float, open_price: float, high: float, low: float, volume: float) -> QuoteSnapshot:
    return make_snapshot(
        symbol,
        price=price,
        open_price=open_price,
        day_high=high,
        day_low=low,
        volume=volume,
        short_name=name,
        source="fallback",
        as_of=datetime(1970, 1, 1, tzinfo=timezone.utc),
    )


# Shown until the first tick lands; also the universe the simulator walks.
FALLBACK_SNAPSHOTS: tuple[QuoteSnapshot, ...] = (
    _fallback("AAPL", "Apple Inc.", 182.50, 180.00, 183.00, 179.50, 50_000_000),
    _fallback("TSLA", "Tesla, Inc.", 245.20, 250.00, 252.00, 242.00, 30_000_000),
    _fallback("NVDA", "NVIDIA Corp", 460.15, 450.00, 465.00, 448.00, 45_000_000),
    _fallback("MSFT", "Microsoft", 335.50, 334.00, 338.00, 333.00, 20_000_000),
    _fallback("AMZN", "Amazon", 135.20, 136.00, 137.00, 134.50, 35_000_000),
    _fallback("GOOGL", "Alphabet", 130.45, 129.50, 131.00, 129.00, 22_000_000),
    _fallback("META", "Meta Platforms", 310.50, 306.00, 312.00, 305.00, 18_000_000),
    _fallback("NFLX", "Netflix", 445.00, 448.00, 450.00, 440.00, 5_000_000),
    _fallback("AMD", "AMD", 105.25, 104.00, 106.00, 103.50, 40_000_000),
    _fallback("DIS", "Disney", 85.50, 86.00, 86.50, 85.00, 12_000_000),
)
