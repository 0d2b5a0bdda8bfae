from __future__ import annotations

import pytest
from pydantic import ValidationError

from papertrade.config import Settings, load_settings
from papertrade.core.ledger.seed import DEFAULT_SEED_PATH
from papertrade.core.ledger.store import LedgerStore
from papertrade.core.marketdata.providers import StooqQuoteProvider, YahooQuoteProvider
from papertrade.core.wiring import build_feed, build_gate, build_ledger, build_quote_provider

_ENV = (
    "PAPERTRADE_STORAGE_PATH",
    "PAPERTRADE_SEED_PATH",
    "PAPERTRADE_QUOTE_MODE",
    "PAPERTRADE_QUOTE_SOURCE",
    "PAPERTRADE_TICK_SECONDS",
    "PAPERTRADE_HISTORY_CACHE_DIR",
    "PAPERTRADE_API_KEY",
    "PAPERTRADE_ALLOW_UNAUTH_LOCALHOST",
    "PAPERTRADE_PIN",
    "LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in _ENV:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults(clean_env) -> None:
    settings = load_settings()
    assert settings.storage_path == ".data/account.json"
    assert settings.seed_path == str(DEFAULT_SEED_PATH)
    assert settings.quote_mode == "simulated"
    assert settings.quote_source == "yahoo"
    assert settings.tick_seconds == 3.0
    assert settings.allow_unauth_localhost is False
    assert settings.pin == ""
    assert settings.log_level == "INFO"


def test_environment_overrides(clean_env, tmp_path) -> None:
    clean_env.setenv("PAPERTRADE_STORAGE_PATH", str(tmp_path / "acct.json"))
    clean_env.setenv("PAPERTRADE_QUOTE_MODE", " LIVE ")
    clean_env.setenv("PAPERTRADE_QUOTE_SOURCE", "stooq")
    clean_env.setenv("PAPERTRADE_TICK_SECONDS", "0.5")
    clean_env.setenv("PAPERTRADE_API_KEY", " k ")
    clean_env.setenv("PAPERTRADE_ALLOW_UNAUTH_LOCALHOST", "yes")
    clean_env.setenv("PAPERTRADE_PIN", "9876")
    clean_env.setenv("LOG_LEVEL", "debug")

    settings = load_settings()
    assert settings.storage_path == str(tmp_path / "acct.json")
    assert settings.quote_mode == "live"
    assert settings.quote_source == "stooq"
    assert settings.tick_seconds == 0.5
    assert settings.api_key == "k"
    assert settings.allow_unauth_localhost is True
    assert settings.pin == "9876"
    assert settings.log_level == "DEBUG"


def test_unparseable_tick_falls_back(clean_env) -> None:
    clean_env.setenv("PAPERTRADE_TICK_SECONDS", "soon")
    assert load_settings().tick_seconds == 3.0


@pytest.mark.parametrize(
    "overrides",
    [
        {"quote_mode": "paper"},
        {"quote_source": "bloomberg"},
        {"tick_seconds": 0},
        {"pin": "12"},
    ],
)
def test_invalid_settings_are_rejected(overrides) -> None:
    with pytest.raises(ValidationError):
        Settings(**overrides)


def test_build_ledger_seeds_storage(tmp_path) -> None:
    settings = Settings(storage_path=str(tmp_path / "account.json"))
    ledger = build_ledger(settings)

    assert isinstance(ledger, LedgerStore)
    assert ledger.balance == 160.0
    assert (tmp_path / "account.json").exists()


def test_build_quote_provider_picks_live_source() -> None:
    assert isinstance(build_quote_provider(Settings(quote_source="stooq")).live, StooqQuoteProvider)
    assert isinstance(build_quote_provider(Settings()).live, YahooQuoteProvider)
    assert build_quote_provider(Settings()).mode == "simulated"


def test_build_feed_tracks_account_symbols(tmp_path) -> None:
    settings = Settings(storage_path=str(tmp_path / "account.json"))
    ledger = build_ledger(settings)
    ledger.toggle_watchlist("ZZZZ")
    assert ledger.set_price_config("AAPL", 150.0, 140.0, 160.0)

    feed = build_feed(settings, ledger, seed=1)
    assert {"AAPL", "TSLA", "ZZZZ"} <= set(feed.symbols)
    aapl = feed.get_snapshot("AAPL")
    assert aapl is not None
    assert aapl.price == 150.0


def test_build_gate_only_with_pin() -> None:
    assert build_gate(Settings()) is None
    gate = build_gate(Settings(pin="1234"))
    assert gate is not None
    assert gate.locked is True
    assert gate.unlock("1234") is True
