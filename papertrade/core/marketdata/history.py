from __future__ import annotations

import io
import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import pandas as pd
import requests

from papertrade.core.ledger.schema import normalize_symbol
from papertrade.core.marketdata.providers import stooq_symbol
from papertrade.core.marketdata.snapshot import QuoteSnapshot
from papertrade.core.orchestration.cache import DiskTTLCache
from papertrade.core.orchestration.time_utils import now_utc, parse_iso

logger = logging.getLogger(__name__)

STOOQ_HISTORY_URL = "https://stooq.com/q/d/l/"
HISTORY_TTL_SECONDS = 3600

# points / interval_minutes drive the synthetic series; stooq_interval / days the live one.
RANGE_MAPPING: dict[str, dict[str, Any]] = {
    "1D": {"points": 40, "interval_minutes": 10, "stooq_interval": None, "days": 1},
    "1W": {"points": 60, "interval_minutes": 60, "stooq_interval": "d", "days": 7},
    "1M": {"points": 30, "interval_minutes": 24 * 60, "stooq_interval": "d", "days": 31},
    "3M": {"points": 90, "interval_minutes": 24 * 60, "stooq_interval": "d", "days": 92},
    "YTD": {"points": 100, "interval_minutes": 24 * 60 * 2, "stooq_interval": "d", "days": None},
    "1Y": {"points": 100, "interval_minutes": 24 * 60 * 3, "stooq_interval": "w", "days": 366},
    "ALL": {"points": 100, "interval_minutes": 24 * 60 * 10, "stooq_interval": "m", "days": None},
}


@dataclass(frozen=True)
class HistoryPoint:
    ts: datetime
    close: float


@dataclass
class HistorySeries:
    symbol: str
    range_key: str
    points: list[HistoryPoint]
    source: str  # live | cache | stale | fallback
    error: str | None = None


def range_mapping(range_key: str) -> dict[str, Any]:
    key = str(range_key or "").strip().upper()
    return RANGE_MAPPING.get(key, RANGE_MAPPING["1D"])


def normalize_range(range_key: str) -> str:
    key = str(range_key or "").strip().upper()
    return key if key in RANGE_MAPPING else "1D"


def fetch_history(
    symbol: str,
    range_key: str,
    *,
    snapshot: QuoteSnapshot | None = None,
    session: requests.Session | None = None,
    cache: DiskTTLCache | None = None,
    rng: random.Random | None = None,
    now: datetime | None = None,
) -> HistorySeries:
    symbol_norm = normalize_symbol(symbol)
    key = normalize_range(range_key)
    mapping = RANGE_MAPPING[key]
    now_dt = now or now_utc()

    if mapping["stooq_interval"] is None:
        return _fallback_series(snapshot, symbol_norm, key, rng=rng, now=now_dt, error=None)

    cache_key = f"history:{symbol_norm}:{mapping['stooq_interval']}"
    if cache is not None:
        cached = cache.get(cache_key, now_iso=now_dt.isoformat())
        if isinstance(cached, dict):
            points = _trim(_points_from_payload(cached), key, now_dt)
            if points:
                return HistorySeries(symbol=symbol_norm, range_key=key, points=points, source="cache")

    try:
        text = _download_csv(symbol_norm, mapping["stooq_interval"], session=session)
        frame = parse_history_csv(text)
    except (requests.RequestException, ValueError) as exc:
        logger.warning("History fetch failed for %s %s: %s", symbol_norm, key, exc)
        stale = cache.get_stale(cache_key) if cache is not None else None
        if isinstance(stale, dict):
            points = _trim(_points_from_payload(stale), key, now_dt)
            if points:
                return HistorySeries(symbol=symbol_norm, range_key=key, points=points, source="stale", error=str(exc))
        return _fallback_series(snapshot, symbol_norm, key, rng=rng, now=now_dt, error=str(exc))

    all_points = [HistoryPoint(ts=row.date.to_pydatetime(), close=float(row.close)) for row in frame.itertuples(index=False)]
    if cache is not None and all_points:
        cache.set(cache_key, _points_to_payload(all_points), ttl_seconds=HISTORY_TTL_SECONDS)

    points = _trim(all_points, key, now_dt)
    if not points:
        return _fallback_series(snapshot, symbol_norm, key, rng=rng, now=now_dt, error="empty_history")
    return HistorySeries(symbol=symbol_norm, range_key=key, points=points, source="live")


def generate_history(
    snapshot: QuoteSnapshot,
    range_key: str,
    *,
    rng: random.Random | None = None,
    now: datetime | None = None,
    volatility: float = 0.01,
) -> list[HistoryPoint]:
    """Reverse random walk that ends exactly at the snapshot's current price."""
    mapping = range_mapping(range_key)
    walker = rng or random.Random()
    now_dt = now or now_utc()
    step = timedelta(minutes=int(mapping["interval_minutes"]))

    points: list[HistoryPoint] = []
    price = snapshot.price
    for i in range(int(mapping["points"])):
        points.append(HistoryPoint(ts=now_dt - step * i, close=price))
        change = 1.0 + (walker.random() - 0.5) * volatility
        price = price / change
    points.reverse()
    return points


def parse_history_csv(text: str) -> pd.DataFrame:
    if not str(text or "").strip():
        raise ValueError("empty history csv")
    frame = pd.read_csv(io.StringIO(text))
    frame = frame.rename(columns={col: str(col).strip().lower() for col in frame.columns})
    if "date" not in frame.columns or "close" not in frame.columns:
        raise ValueError("history csv is missing date/close columns")
    frame["date"] = pd.to_datetime(frame["date"], utc=True, errors="coerce")
    frame["close"] = pd.to_numeric(frame["close"], errors="coerce")
    frame = frame.dropna(subset=["date", "close"])
    frame = frame.sort_values("date").drop_duplicates(subset=["date"], keep="last")
    return frame[["date", "close"]].reset_index(drop=True)


def history_to_dict(series: HistorySeries) -> dict[str, Any]:
    return {
        "symbol": series.symbol,
        "range_key": series.range_key,
        "source": series.source,
        "error": series.error,
        "points": [{"ts": p.ts.isoformat(), "close": p.close} for p in series.points],
    }


def _download_csv(symbol: str, interval: str, *, session: requests.Session | None) -> str:
    client = session or requests.Session()
    response = client.get(
        STOOQ_HISTORY_URL,
        params={"s": stooq_symbol(symbol), "i": interval, "e": "csv"},
        timeout=10,
    )
    response.raise_for_status()
    return response.text


def _trim(points: list[HistoryPoint], range_key: str, now: datetime) -> list[HistoryPoint]:
    mapping = RANGE_MAPPING[range_key]
    if range_key == "YTD":
        start = datetime(now.year, 1, 1, tzinfo=timezone.utc)
    elif mapping["days"] is None:
        return list(points)
    else:
        start = now - timedelta(days=int(mapping["days"]))
    return [p for p in points if p.ts >= start]


def _fallback_series(
    snapshot: QuoteSnapshot | None,
    symbol: str,
    range_key: str,
    *,
    rng: random.Random | None,
    now: datetime,
    error: str | None,
) -> HistorySeries:
    points = generate_history(snapshot, range_key, rng=rng, now=now) if snapshot is not None else []
    return HistorySeries(symbol=symbol, range_key=range_key, points=points, source="fallback", error=error)


def _points_to_payload(points: list[HistoryPoint]) -> dict[str, Any]:
    return {"points": [{"ts": p.ts.isoformat(), "close": p.close} for p in points]}


def _points_from_payload(payload: dict[str, Any]) -> list[HistoryPoint]:
    raw = payload.get("points", [])
    if not isinstance(raw, list):
        return []
    points: list[HistoryPoint] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            points.append(HistoryPoint(ts=parse_iso(str(item["ts"])), close=float(item["close"])))
        except (KeyError, TypeError, ValueError):
            continue
    return points
