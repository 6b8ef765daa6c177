"""Pydantic schemas for the price store."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class PricePointResponse(BaseModel):
    symbol: str
    price_date: date
    price: Decimal | None = None
    quality: float
    source: str | None = None

    model_config = ConfigDict(from_attributes=True)


class PriceGapResponse(BaseModel):
    symbol: str
    start_date: date
    end_date: date
    missing_days: int

    model_config = ConfigDict(from_attributes=True)


class BackfillRequest(BaseModel):
    start_date: date | None = None
    end_date: date | None = None
    symbols: list[str] = []
    max_symbols: int | None = Field(default=None, ge=1)


class SymbolBackfillResponse(BaseModel):
    symbol: str
    gaps: list[PriceGapResponse]
    fetched: int
    inserted: int
    replaced: int

    model_config = ConfigDict(from_attributes=True)


class BackfillResponse(BaseModel):
    requested: list[str]
    processed: list[str]
    up_to_date: list[str]
    remaining: list[str]
    results: dict[str, SymbolBackfillResponse]
    errors: dict[str, str]
    cancelled: bool

    model_config = ConfigDict(from_attributes=True)
