from __future__ import annotations

import math

from pydantic import BaseModel, Field, field_validator, model_validator

ACCOUNT_SCHEMA_VERSION = 1


def normalize_symbol(value: object) -> str:
    return str(value or "").strip().upper()


class Holding(BaseModel):
    symbol: str
    shares: float = Field(gt=0.0)
    avg_cost: float = Field(ge=0.0)

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, value: str) -> str:
        symbol = normalize_symbol(value)
        if not symbol:
            raise ValueError("symbol cannot be empty")
        return symbol


class PriceRangeConfig(BaseModel):
    """Pins a simulated price and the band the random walk may move in."""

    symbol: str
    price: float = Field(gt=0.0)
    min_price: float = Field(gt=0.0)
    max_price: float = Field(gt=0.0)

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, value: str) -> str:
        symbol = normalize_symbol(value)
        if not symbol:
            raise ValueError("symbol cannot be empty")
        return symbol

    @model_validator(mode="after")
    def check_band(self) -> "PriceRangeConfig":
        if self.min_price > self.max_price:
            raise ValueError("min_price cannot be greater than max_price")
        if not (self.min_price <= self.price <= self.max_price):
            raise ValueError("price must lie between min_price and max_price")
        return self

    def clamp(self, price: float) -> float:
        return min(self.max_price, max(self.min_price, price))


class Account(BaseModel):
    version: int = ACCOUNT_SCHEMA_VERSION
    balance: float = 0.0
    currency: str = "€"
    holdings: list[Holding] = Field(default_factory=list)
    watchlist: list[str] = Field(default_factory=list)
    price_configs: dict[str, PriceRangeConfig] = Field(default_factory=dict)

    @field_validator("balance")
    @classmethod
    def finite_balance(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("balance must be finite")
        return value

    @field_validator("watchlist")
    @classmethod
    def normalize_watchlist(cls, value: list[str]) -> list[str]:
        return sorted({normalize_symbol(item) for item in value if normalize_symbol(item)})

    @model_validator(mode="after")
    def dedupe_holdings(self) -> "Account":
        by_symbol: dict[str, Holding] = {}
        for holding in self.holdings:
            by_symbol[holding.symbol] = holding
        self.holdings = [by_symbol[key] for key in sorted(by_symbol)]
        self.price_configs = {cfg.symbol: cfg for cfg in self.price_configs.values()}
        return self

    def holding_for(self, symbol: str) -> Holding | None:
        symbol_norm = normalize_symbol(symbol)
        for holding in self.holdings:
            if holding.symbol == symbol_norm:
                return holding
        return None
