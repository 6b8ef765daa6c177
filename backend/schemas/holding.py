"""Pydantic schemas for reconstructed holdings."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class HoldingResponse(BaseModel):
    """Holding with weighted-average and FIFO cost basis side by side."""

    symbol: str
    quantity: Decimal
    cost_basis: Decimal
    average_cost: Decimal
    fifo_cost_basis: Decimal
    realized_gain: Decimal
    current_price: Decimal | None = None
    current_value: Decimal | None = None
    unrealized_gain: Decimal | None = None
    price_source: str | None = None
    price_date: date | None = None
    asset_type: str | None = None

    model_config = ConfigDict(from_attributes=True)


class ReconstructionResponse(BaseModel):
    account_id: str
    holdings: int
    created: int
    updated: int
    deleted: int
    price_sources: dict[str, str]
