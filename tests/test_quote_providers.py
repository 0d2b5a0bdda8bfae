from __future__ import annotations

from typing import Any

import pytest
import requests

from papertrade.core.ledger.schema import PriceRangeConfig
from papertrade.core.marketdata.feed import QuoteFeed
from papertrade.core.marketdata.providers import (
    LiveOrSimulatedQuoteProvider,
    QuoteProviderError,
    SimulatedQuoteProvider,
    StooqQuoteProvider,
    YahooQuoteProvider,
    parse_stooq_quotes,
    stooq_symbol,
)
from papertrade.core.marketdata.snapshot import make_snapshot


class FakeResponse:
    def __init__(self, *, payload: Any = None, text: str = "", status: int = 200) -> None:
        self._payload = payload
        self.text = text
        self.status_code = status

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"status {self.status_code}")

    def json(self) -> Any:
        return self._payload


class FakeSession:
    def __init__(self, responses: list[Any]) -> None:
        self.responses = list(responses)
        self.calls: list[tuple[str, dict]] = []

    def get(self, url: str, params: dict | None = None, **kwargs: Any) -> FakeResponse:
        self.calls.append((url, dict(params or {})))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


_YAHOO_PAYLOAD = {
    "quoteResponse": {
        "result": [
            {
                "symbol": "AAPL",
                "shortName": "Apple Inc.",
                "regularMarketPrice": 182.5,
                "regularMarketOpen": 180.0,
                "regularMarketDayHigh": 183.0,
                "regularMarketDayLow": 179.5,
                "regularMarketVolume": 50_000_000,
            },
            {"symbol": "BROKEN"},
        ]
    }
}

_STOOQ_CSV = (
    "Symbol,Date,Time,Open,High,Low,Close,Volume\n"
    "AAPL.US,2026-02-13,22:00:09,180,183,179.5,182.5,50000000\n"
    "TSLA.US,N/D,N/D,N/D,N/D,N/D,N/D,N/D\n"
)


def test_simulated_walk_is_deterministic_and_bounded() -> None:
    base = {"AAPL": make_snapshot("AAPL", price=100.0, open_price=100.0, volume=1000)}
    first = SimulatedQuoteProvider(seed=7).fetch_snapshots(["AAPL"], base)
    second = SimulatedQuoteProvider(seed=7).fetch_snapshots(["AAPL"], base)

    assert first["AAPL"].price == second["AAPL"].price
    assert 99.85 <= first["AAPL"].price <= 100.15
    assert first["AAPL"].source == "simulated"
    assert first["AAPL"].volume >= 1000
    assert first["AAPL"].change_abs == pytest.approx(first["AAPL"].price - 100.0)


def test_simulated_walk_respects_price_band() -> None:
    provider = SimulatedQuoteProvider(seed=1, volatility=0.5)
    provider.configure(PriceRangeConfig(symbol="TSLA", price=200.0, min_price=199.0, max_price=201.0))
    previous = {"TSLA": make_snapshot("TSLA", price=200.0, open_price=200.0)}

    for _ in range(50):
        previous = provider.fetch_snapshots(["TSLA"], previous)
        assert 199.0 <= previous["TSLA"].price <= 201.0

    provider.clear_config("tsla")
    assert provider.configs == {}


def test_simulated_walk_never_drops_below_a_cent() -> None:
    provider = SimulatedQuoteProvider(seed=3, volatility=0.99)
    previous = {"DUST": make_snapshot("DUST", price=0.01, open_price=0.01)}
    for _ in range(20):
        previous = provider.fetch_snapshots(["DUST"], previous)
        assert previous["DUST"].price >= 0.01


def test_simulated_walk_prices_unknown_symbols() -> None:
    result = SimulatedQuoteProvider(seed=2).fetch_snapshots(["nvda", "QQQQ", ""], {})
    assert set(result) == {"NVDA", "QQQQ"}
    assert result["NVDA"].short_name == "NVIDIA Corp"


def test_yahoo_provider_maps_regular_market_fields() -> None:
    session = FakeSession([FakeResponse(payload=_YAHOO_PAYLOAD)])
    provider = YahooQuoteProvider(session=session)  # type: ignore[arg-type]

    result = provider.fetch_snapshots(["aapl", "BROKEN"], {})

    assert list(result) == ["AAPL"]
    q = result["AAPL"]
    assert q.price == 182.5
    assert q.open == 180.0
    assert q.change_abs == 2.5
    assert q.short_name == "Apple Inc."
    assert q.source == "live"
    assert session.calls[0][1] == {"symbols": "AAPL,BROKEN"}


def test_yahoo_provider_tries_second_host_then_raises() -> None:
    session = FakeSession([requests.ConnectionError("cors"), FakeResponse(payload=_YAHOO_PAYLOAD)])
    result = YahooQuoteProvider(session=session).fetch_snapshots(["AAPL"], {})  # type: ignore[arg-type]
    assert "AAPL" in result
    assert "query2" in session.calls[1][0]

    failing = FakeSession([FakeResponse(status=500), FakeResponse(status=500)])
    with pytest.raises(QuoteProviderError):
        YahooQuoteProvider(session=failing).fetch_snapshots(["AAPL"], {})  # type: ignore[arg-type]


def test_stooq_symbol_suffix() -> None:
    assert stooq_symbol("aapl") == "AAPL.US"
    assert stooq_symbol("BRK.B") == "BRK.B"
    assert stooq_symbol("^SPX") == "^SPX"


def test_parse_stooq_quotes_drops_missing_rows() -> None:
    frame = parse_stooq_quotes(_STOOQ_CSV)
    assert list(frame["symbol"]) == ["AAPL.US"]
    assert float(frame.iloc[0]["close"]) == 182.5
    assert parse_stooq_quotes("").empty


def test_stooq_provider_builds_snapshots() -> None:
    session = FakeSession([FakeResponse(text=_STOOQ_CSV)])
    result = StooqQuoteProvider(session=session).fetch_snapshots(["AAPL", "TSLA"], {})  # type: ignore[arg-type]

    assert set(result) == {"AAPL"}
    q = result["AAPL"]
    assert q.price == 182.5
    assert q.change_abs == 2.5
    assert q.short_name == "Apple Inc."
    assert session.calls[0][1]["s"] == "AAPL.US,TSLA.US"


def test_stooq_provider_raises_on_http_error() -> None:
    session = FakeSession([FakeResponse(status=503)])
    with pytest.raises(QuoteProviderError):
        StooqQuoteProvider(session=session).fetch_snapshots(["AAPL"], {})  # type: ignore[arg-type]


class _Live:
    def __init__(self, result: dict | Exception) -> None:
        self.result = result

    def fetch_snapshots(self, symbols, previous):
        if isinstance(self.result, Exception):
            raise self.result
        return dict(self.result)


def test_live_or_simulated_falls_back_on_error() -> None:
    provider = LiveOrSimulatedQuoteProvider(live=_Live(QuoteProviderError("down")), simulated=SimulatedQuoteProvider(seed=1))
    result = provider.fetch_snapshots(["AAPL"], {})
    assert result["AAPL"].source == "simulated"


def test_live_or_simulated_fills_missing_symbols() -> None:
    live_quote = make_snapshot("AAPL", price=182.5, open_price=180.0, source="live")
    provider = LiveOrSimulatedQuoteProvider(live=_Live({"AAPL": live_quote}), simulated=SimulatedQuoteProvider(seed=1))

    result = provider.fetch_snapshots(["AAPL", "TSLA"], {})
    assert result["AAPL"].source == "live"
    assert result["TSLA"].source == "simulated"


def test_simulated_mode_skips_live_provider() -> None:
    provider = LiveOrSimulatedQuoteProvider(live=_Live(RuntimeError("must not be called")), mode="simulated")
    result = provider.fetch_snapshots(["AMD"], {})
    assert result["AMD"].source == "simulated"


_BROKEN_CSV = 'Symbol,Date,Time,Open,High,Low,Close,Volume\n"AAPL.US,2026-02-13,22:00:09,180,183,179.5,182.5,50000000\n'


def test_stooq_provider_raises_on_unparseable_body() -> None:
    session = FakeSession([FakeResponse(text=_BROKEN_CSV)])
    with pytest.raises(QuoteProviderError):
        StooqQuoteProvider(session=session).fetch_snapshots(["AAPL"], {})  # type: ignore[arg-type]


def test_feed_falls_back_to_simulation_on_unparseable_stooq_body() -> None:
    session = FakeSession([FakeResponse(text=_BROKEN_CSV)])
    provider = LiveOrSimulatedQuoteProvider(
        live=StooqQuoteProvider(session=session),  # type: ignore[arg-type]
        simulated=SimulatedQuoteProvider(seed=1),
        mode="live",
    )
    feed = QuoteFeed(provider=provider, symbols=["AAPL"])

    snapshots = feed.tick()
    assert snapshots["AAPL"].source == "simulated"


def test_yahoo_provider_skips_non_finite_numbers() -> None:
    payload = {
        "quoteResponse": {
            "result": [
                {"symbol": "AAPL", "regularMarketPrice": 182.5, "regularMarketOpen": float("inf")},
                {"symbol": "GHOST", "regularMarketPrice": float("nan"), "regularMarketOpen": 10.0},
            ]
        }
    }
    session = FakeSession([FakeResponse(payload=payload)])

    result = YahooQuoteProvider(session=session).fetch_snapshots(["AAPL", "GHOST"], {})  # type: ignore[arg-type]

    assert list(result) == ["AAPL"]
    assert result["AAPL"].open == 182.5
    assert result["AAPL"].change_abs == 0.0
