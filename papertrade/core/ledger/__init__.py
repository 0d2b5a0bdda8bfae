from __future__ import annotations

from papertrade.core.ledger.schema import ACCOUNT_SCHEMA_VERSION, Account, Holding, PriceRangeConfig, normalize_symbol
from papertrade.core.ledger.seed import DEFAULT_SEED_PATH, load_seed_account
from papertrade.core.ledger.storage import (
    AccountStorage,
    JsonFileAccountStorage,
    MemoryAccountStorage,
    PersistenceError,
    account_from_payload,
    account_to_payload,
)
from papertrade.core.ledger.store import LedgerStore

__all__ = [
    "ACCOUNT_SCHEMA_VERSION",
    "Account",
    "AccountStorage",
    "DEFAULT_SEED_PATH",
    "Holding",
    "JsonFileAccountStorage",
    "LedgerStore",
    "MemoryAccountStorage",
    "PersistenceError",
    "PriceRangeConfig",
    "account_from_payload",
    "account_to_payload",
    "load_seed_account",
    "normalize_symbol",
]
