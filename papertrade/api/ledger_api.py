from __future__ import annotations

import logging
import math
import re
import secrets
from typing import Any, Callable

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from papertrade.config import Settings, configure_logging, load_settings
from papertrade.core.access.gate import AccessGate
from papertrade.core.ledger.storage import PersistenceError
from papertrade.core.ledger.store import LedgerStore
from papertrade.core.marketdata.feed import QuoteFeed
from papertrade.core.marketdata.history import HistorySeries, fetch_history, history_to_dict, normalize_range
from papertrade.core.marketdata.snapshot import QuoteSnapshot, snapshot_to_dict
from papertrade.core.orchestration.cache import DiskTTLCache
from papertrade.core.orchestration.time_utils import now_iso
from papertrade.core.valuation.engine import valuation_to_dict
from papertrade.core.valuation.monitor import PortfolioMonitor
from papertrade.core.wiring import build_feed, build_gate, build_ledger

logger = logging.getLogger(__name__)

_SYMBOL_PATTERN = re.compile(r"^[A-Z0-9.\-^=]+$")

HistoryFetcher = Callable[[str, str, QuoteSnapshot | None], HistorySeries]


def create_app(
    settings: Settings | None = None,
    *,
    ledger_factory: Callable[[], LedgerStore] | None = None,
    feed_factory: Callable[[LedgerStore], QuoteFeed] | None = None,
    gate_factory: Callable[[], AccessGate | None] | None = None,
    history_fetcher: HistoryFetcher | None = None,
) -> Starlette:
    cfg = settings or load_settings()
    app = Starlette(debug=False, routes=[
        Route("/api/health", endpoint=_health, methods=["GET"]),
        Route("/api/unlock", endpoint=_unlock, methods=["POST"]),
        Route("/api/lock", endpoint=_lock, methods=["POST"]),
        Route("/api/account", endpoint=_account, methods=["GET"]),
        Route("/api/valuation", endpoint=_valuation, methods=["GET"]),
        Route("/api/quotes", endpoint=_quotes, methods=["GET"]),
        Route("/api/history/{symbol}", endpoint=_history, methods=["GET"]),
        Route("/api/trade/buy", endpoint=_buy, methods=["POST"]),
        Route("/api/trade/sell", endpoint=_sell, methods=["POST"]),
        Route("/api/watchlist/toggle", endpoint=_toggle_watchlist, methods=["POST"]),
        Route("/api/holdings/override", endpoint=_override_holding, methods=["POST"]),
        Route("/api/account/reset", endpoint=_reset_account, methods=["POST"]),
        Route("/api/price-config", endpoint=_price_config, methods=["POST"]),
    ])
    app.state.settings = cfg
    app.state.ledger_factory = ledger_factory or (lambda: build_ledger(cfg))
    app.state.feed_factory = feed_factory or (lambda ledger: build_feed(cfg, ledger))
    app.state.history_fetcher = history_fetcher or _default_history_fetcher(cfg)
    app.state.gate = (gate_factory or (lambda: build_gate(cfg)))()
    app.state.monitor = None
    return app


async def _health(request: Request) -> JSONResponse:
    return JSONResponse({"ok": True, "service": "papertrade-api", "as_of": now_iso()})


async def _unlock(request: Request) -> JSONResponse:
    auth_error = _check_auth(request)
    if auth_error:
        return auth_error
    payload, error = await _read_payload(request)
    if error:
        return error
    gate: AccessGate | None = request.app.state.gate
    if gate is None:
        return JSONResponse({"ok": True, "locked": False})
    if not gate.unlock(str(payload.get("pin", "") or "")):
        return _error(403, "UNLOCK_FAILED", "Incorrect PIN.")
    return JSONResponse({"ok": True, "locked": False})


async def _lock(request: Request) -> JSONResponse:
    auth_error = _check_auth(request)
    if auth_error:
        return auth_error
    gate: AccessGate | None = request.app.state.gate
    if gate is not None:
        gate.lock()
    return JSONResponse({"ok": True, "locked": gate is not None})


async def _account(request: Request) -> JSONResponse:
    guard = _guard(request)
    if guard:
        return guard
    return JSONResponse({"ok": True, "account": _get_monitor(request).ledger.account().model_dump(mode="json")})


async def _valuation(request: Request) -> JSONResponse:
    guard = _guard(request)
    if guard:
        return guard
    valuation = _get_monitor(request).refresh()
    return JSONResponse({"ok": True, "generated_at": now_iso(), "valuation": valuation_to_dict(valuation)})


async def _quotes(request: Request) -> JSONResponse:
    guard = _guard(request)
    if guard:
        return guard
    monitor = _get_monitor(request)
    if _to_bool(request.query_params.get("tick", "0")):
        monitor.tick()
    snapshots = monitor.feed.snapshots()
    return JSONResponse({
        "ok": True,
        "quotes": [snapshot_to_dict(snapshots[key]) for key in sorted(snapshots)],
    })


async def _history(request: Request) -> JSONResponse:
    guard = _guard(request)
    if guard:
        return guard
    symbol = _normalize_symbol(request.path_params.get("symbol"))
    if not symbol:
        return _error(422, "INVALID_SYMBOL", "Symbol must contain A-Z, 0-9, '.', '-', '^' or '='.")
    range_key = normalize_range(request.query_params.get("range", "1D"))
    snapshot = _get_monitor(request).feed.get_snapshot(symbol)
    series = request.app.state.history_fetcher(symbol, range_key, snapshot)
    return JSONResponse({"ok": True, "history": history_to_dict(series)})


async def _buy(request: Request) -> JSONResponse:
    return await _trade(request, side="buy")


async def _sell(request: Request) -> JSONResponse:
    return await _trade(request, side="sell")


async def _trade(request: Request, *, side: str) -> JSONResponse:
    guard = _guard(request)
    if guard:
        return guard
    payload, error = await _read_payload(request)
    if error:
        return error

    symbol = _normalize_symbol(payload.get("symbol"))
    if not symbol:
        return _error(422, "INVALID_SYMBOL", "Symbol must contain A-Z, 0-9, '.', '-', '^' or '='.")
    shares = _to_float(payload.get("shares"))
    if shares is None or shares <= 0:
        return _error(422, "INVALID_AMOUNT", "Please enter a valid amount.")

    monitor = _get_monitor(request)
    ledger = monitor.ledger
    price = _to_float(payload.get("price"))
    if payload.get("price") is None:
        snapshot = monitor.feed.get_snapshot(symbol)
        price = snapshot.price if snapshot is not None else None
    if price is None or price < 0:
        return _error(422, "NO_PRICE", f"No usable price for {symbol}.")

    if side == "buy" and shares * price > ledger.balance:
        return _error(422, "INSUFFICIENT_FUNDS", "Insufficient funds.")
    if side == "sell" and ledger.held_shares(symbol) < shares:
        return _error(422, "INSUFFICIENT_SHARES", "Insufficient shares.")

    try:
        ok = ledger.buy(symbol, shares, price) if side == "buy" else ledger.sell(symbol, shares, price)
    except PersistenceError as exc:
        logger.error("Trade %s %s not persisted: %s", side, symbol, exc)
        return _error(503, "PERSISTENCE_FAILED", "The trade could not be saved; nothing was changed.")
    if not ok:
        return _error(422, "TRADE_REJECTED", "Transaction failed.")
    return _state_response(monitor, trade={"side": side, "symbol": symbol, "shares": shares, "price": price})


async def _toggle_watchlist(request: Request) -> JSONResponse:
    guard = _guard(request)
    if guard:
        return guard
    payload, error = await _read_payload(request)
    if error:
        return error
    symbol = _normalize_symbol(payload.get("symbol"))
    if not symbol:
        return _error(422, "INVALID_SYMBOL", "Symbol must contain A-Z, 0-9, '.', '-', '^' or '='.")
    monitor = _get_monitor(request)
    try:
        watched = monitor.ledger.toggle_watchlist(symbol)
    except PersistenceError:
        return _error(503, "PERSISTENCE_FAILED", "The watchlist could not be saved.")
    return JSONResponse({"ok": True, "symbol": symbol, "watched": watched, "watchlist": monitor.ledger.watchlist})


async def _override_holding(request: Request) -> JSONResponse:
    guard = _guard(request)
    if guard:
        return guard
    payload, error = await _read_payload(request)
    if error:
        return error
    symbol = _normalize_symbol(payload.get("symbol"))
    shares = _to_float(payload.get("shares"))
    if not symbol or shares is None:
        return _error(422, "INVALID_PAYLOAD", "symbol and shares are required.")
    monitor = _get_monitor(request)
    try:
        ok = monitor.ledger.set_direct_holding_shares(symbol, shares)
    except PersistenceError:
        return _error(503, "PERSISTENCE_FAILED", "The override could not be saved.")
    if not ok:
        return _error(404, "NOT_HELD", f"{symbol} is not held.")
    return _state_response(monitor)


async def _reset_account(request: Request) -> JSONResponse:
    guard = _guard(request)
    if guard:
        return guard
    payload, error = await _read_payload(request)
    if error:
        return error
    if payload.get("confirm") is not True:
        return _error(409, "CONFIRMATION_REQUIRED", "Resetting the account needs {\"confirm\": true}.")
    monitor = _get_monitor(request)
    try:
        monitor.ledger.reset_account()
    except PersistenceError:
        return _error(503, "PERSISTENCE_FAILED", "The reset could not be saved.")
    return _state_response(monitor)


async def _price_config(request: Request) -> JSONResponse:
    guard = _guard(request)
    if guard:
        return guard
    payload, error = await _read_payload(request)
    if error:
        return error
    symbol = _normalize_symbol(payload.get("symbol"))
    price = _to_float(payload.get("price"))
    min_price = _to_float(payload.get("min"))
    max_price = _to_float(payload.get("max"))
    if not symbol or price is None or min_price is None or max_price is None:
        return _error(422, "INVALID_PAYLOAD", "symbol, price, min and max are required.")
    if min_price > max_price:
        return _error(422, "INVALID_RANGE", "Min price cannot be greater than Max price.")

    monitor = _get_monitor(request)
    try:
        ok = monitor.ledger.set_price_config(symbol, price, min_price, max_price)
    except PersistenceError:
        return _error(503, "PERSISTENCE_FAILED", "The price config could not be saved.")
    if not ok:
        return _error(422, "INVALID_RANGE", "Price must lie between min and max.")
    config = monitor.ledger.price_config(symbol)
    if config is not None:
        monitor.feed.apply_price_config(config)
    snapshot = monitor.feed.get_snapshot(symbol)
    return JSONResponse({
        "ok": True,
        "config": config.model_dump(mode="json") if config is not None else None,
        "quote": snapshot_to_dict(snapshot) if snapshot is not None else None,
    })


def _default_history_fetcher(settings: Settings) -> HistoryFetcher:
    cache = DiskTTLCache(base_dir=settings.history_cache_dir)

    def _fetch(symbol: str, range_key: str, snapshot: QuoteSnapshot | None) -> HistorySeries:
        return fetch_history(symbol, range_key, snapshot=snapshot, cache=cache)

    return _fetch


def _get_monitor(request: Request) -> PortfolioMonitor:
    monitor = getattr(request.app.state, "monitor", None)
    if isinstance(monitor, PortfolioMonitor):
        return monitor
    ledger = request.app.state.ledger_factory()
    feed = request.app.state.feed_factory(ledger)
    monitor = PortfolioMonitor(ledger=ledger, feed=feed)
    request.app.state.monitor = monitor
    return monitor


def _state_response(monitor: PortfolioMonitor, **extra: Any) -> JSONResponse:
    body: dict[str, Any] = {
        "ok": True,
        "account": monitor.ledger.account().model_dump(mode="json"),
        "valuation": valuation_to_dict(monitor.refresh()),
    }
    body.update(extra)
    return JSONResponse(body)


def _guard(request: Request) -> JSONResponse | None:
    auth_error = _check_auth(request)
    if auth_error:
        return auth_error
    gate: AccessGate | None = request.app.state.gate
    if gate is not None and gate.locked:
        return _error(423, "LOCKED", "Unlock with your PIN first.")
    return None


async def _read_payload(request: Request) -> tuple[dict[str, Any], JSONResponse | None]:
    try:
        payload = await request.json()
    except Exception:
        return {}, _error(400, "INVALID_JSON", "Request body must be valid JSON.")
    if not isinstance(payload, dict):
        return {}, _error(400, "INVALID_PAYLOAD", "Request body must be a JSON object.")
    if len(payload) > 8:
        return {}, _error(400, "PAYLOAD_TOO_LARGE", "Payload has too many fields.")
    return payload, None


def _check_auth(request: Request) -> JSONResponse | None:
    settings: Settings = request.app.state.settings
    if settings.allow_unauth_localhost and _is_localhost_client(request):
        return None
    if not settings.api_key:
        return _error(503, "AUTH_NOT_CONFIGURED", "PAPERTRADE_API_KEY is required.")
    header_key = str(request.headers.get("x-api-key", "")).strip()
    if header_key and secrets.compare_digest(header_key, settings.api_key):
        return None
    auth_header = str(request.headers.get("authorization", "")).strip()
    if auth_header.lower().startswith("bearer "):
        token = auth_header[7:].strip()
        if token and secrets.compare_digest(token, settings.api_key):
            return None
    return _error(401, "UNAUTHORIZED", "Missing or invalid API key.")


def _normalize_symbol(value: Any) -> str | None:
    text = str(value or "").strip().upper()
    if not text or len(text) > 16:
        return None
    if not _SYMBOL_PATTERN.fullmatch(text):
        return None
    return text


def _to_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value or "").strip().lower()
    return text in {"1", "true", "yes", "on"}


def _error(status: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        {"ok": False, "error": {"code": str(code), "message": str(message)}},
        status_code=int(status),
    )


def _is_localhost_client(request: Request) -> bool:
    client = getattr(request, "client", None)
    host = str(getattr(client, "host", "") or "").strip()
    return host in {"127.0.0.1", "::1", "localhost", "testclient"}


def build_default_app() -> Starlette:
    settings = load_settings()
    configure_logging(settings)
    return create_app(settings)
