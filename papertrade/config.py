from __future__ import annotations

import logging
import os

from pydantic import BaseModel, Field, field_validator

from papertrade.core.ledger.seed import DEFAULT_SEED_PATH
from papertrade.core.ledger.storage import DEFAULT_ACCOUNT_PATH


class Settings(BaseModel):
    storage_path: str = DEFAULT_ACCOUNT_PATH
    seed_path: str = str(DEFAULT_SEED_PATH)
    quote_mode: str = "simulated"  # live | simulated
    quote_source: str = "yahoo"  # yahoo | stooq
    tick_seconds: float = Field(default=3.0, gt=0.0)
    history_cache_dir: str = ".cache/history"
    api_key: str = ""
    allow_unauth_localhost: bool = False
    pin: str = ""
    log_level: str = "INFO"

    @field_validator("quote_mode")
    @classmethod
    def check_mode(cls, value: str) -> str:
        mode = value.strip().lower()
        if mode not in {"live", "simulated"}:
            raise ValueError(f"unsupported quote mode: {value}")
        return mode

    @field_validator("quote_source")
    @classmethod
    def check_source(cls, value: str) -> str:
        source = value.strip().lower()
        if source not in {"yahoo", "stooq"}:
            raise ValueError(f"unsupported quote source: {value}")
        return source

    @field_validator("pin")
    @classmethod
    def check_pin(cls, value: str) -> str:
        pin = value.strip()
        if pin and (not pin.isdigit() or not 4 <= len(pin) <= 8):
            raise ValueError("PAPERTRADE_PIN must be 4 to 8 digits")
        return pin


def load_settings() -> Settings:
    return Settings(
        storage_path=os.getenv("PAPERTRADE_STORAGE_PATH", DEFAULT_ACCOUNT_PATH),
        seed_path=os.getenv("PAPERTRADE_SEED_PATH", "") or str(DEFAULT_SEED_PATH),
        quote_mode=os.getenv("PAPERTRADE_QUOTE_MODE", "simulated"),
        quote_source=os.getenv("PAPERTRADE_QUOTE_SOURCE", "yahoo"),
        tick_seconds=_to_float(os.getenv("PAPERTRADE_TICK_SECONDS", "3"), default=3.0),
        history_cache_dir=os.getenv("PAPERTRADE_HISTORY_CACHE_DIR", ".cache/history"),
        api_key=str(os.getenv("PAPERTRADE_API_KEY", "")).strip(),
        allow_unauth_localhost=_to_bool(os.getenv("PAPERTRADE_ALLOW_UNAUTH_LOCALHOST", "0")),
        pin=str(os.getenv("PAPERTRADE_PIN", "")).strip(),
        log_level=str(os.getenv("LOG_LEVEL", "INFO")).strip().upper() or "INFO",
    )


def configure_logging(settings: Settings | None = None) -> None:
    level = (settings or load_settings()).log_level
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _to_bool(value: object) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value or "").strip().lower()
    return text in {"1", "true", "yes", "on"}


def _to_float(value: object, *, default: float) -> float:
    try:
        return float(str(value).strip())
    except ValueError:
        return default
