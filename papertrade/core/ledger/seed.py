from __future__ import annotations

from pathlib import Path

import yaml

from papertrade.core.ledger.schema import Account

DEFAULT_SEED_PATH = Path(__file__).resolve().parent / "seed_account.yaml"


def load_seed_account(path: str | Path | None = None) -> Account:
    seed_path = Path(path) if path else DEFAULT_SEED_PATH
    with seed_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"seed account file {seed_path} must contain a mapping")
    return Account.model_validate(raw)
