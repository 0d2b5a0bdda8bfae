#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json
import logging
import threading

from papertrade.config import configure_logging, load_settings
from papertrade.core.valuation.engine import valuation_to_dict
from papertrade.core.valuation.monitor import PortfolioMonitor
from papertrade.core.wiring import build_feed, build_ledger

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Tick the quote feed and print portfolio valuations.")
    parser.add_argument("--ticks", type=int, default=5, help="Number of price ticks to run.")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between ticks (defaults to PAPERTRADE_TICK_SECONDS).")
    parser.add_argument("--seed", type=int, default=None, help="Random seed for the simulated walk.")
    parser.add_argument("--buy", nargs=2, metavar=("SYMBOL", "SHARES"), default=None, help="Buy at the current price before ticking.")
    parser.add_argument("--sell", nargs=2, metavar=("SYMBOL", "SHARES"), default=None, help="Sell at the current price before ticking.")
    args = parser.parse_args()

    settings = load_settings()
    configure_logging(settings)
    ledger = build_ledger(settings)
    feed = build_feed(settings, ledger, seed=args.seed)
    monitor = PortfolioMonitor(ledger=ledger, feed=feed)

    for side, order in (("buy", args.buy), ("sell", args.sell)):
        if order is None:
            continue
        symbol, shares_text = order
        feed.track([symbol])
        snapshot = feed.get_snapshot(symbol) or feed.tick().get(symbol.upper())
        if snapshot is None:
            logger.error("No price available for %s", symbol)
            return 1
        trade = ledger.buy if side == "buy" else ledger.sell
        if not trade(symbol, float(shares_text), snapshot.price):
            logger.error("%s %s x %s rejected", side, symbol, shares_text)
            return 1

    interval = settings.tick_seconds if args.interval is None else args.interval
    monitor.subscribe(lambda valuation: print(json.dumps(valuation_to_dict(valuation), ensure_ascii=False)))
    monitor.run(interval, max_ticks=max(1, args.ticks), stop_event=threading.Event())
    monitor.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
