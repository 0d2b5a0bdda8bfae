#!/usr/bin/env python3
from __future__ import annotations

import argparse
import json

from papertrade.config import configure_logging, load_settings
from papertrade.core.ledger.scenario import apply_scenario, load_scenario
from papertrade.core.wiring import build_ledger


def main() -> int:
    parser = argparse.ArgumentParser(description="Apply a YAML scenario to the persisted account.")
    parser.add_argument("scenario", help="Path to the scenario YAML file.")
    parser.add_argument("--keep", action="store_true", help="Apply on top of the current account instead of resetting first.")
    args = parser.parse_args()

    settings = load_settings()
    configure_logging(settings)
    ledger = build_ledger(settings)

    scenario = load_scenario(args.scenario)
    if args.keep:
        scenario = scenario.model_copy(update={"reset": False})
    apply_scenario(ledger, scenario)
    print(json.dumps(ledger.account().model_dump(mode="json"), indent=2, ensure_ascii=False))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
