"""Pydantic schemas for FIFO lot tracking."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class LotDisposalResponse(BaseModel):
    id: str
    holding_lot_id: str
    sell_transaction_id: str | None = None
    disposal_date: date
    quantity: Decimal
    cost_per_share: Decimal
    proceeds_per_unit: Decimal
    realized_gain: Decimal

    model_config = ConfigDict(from_attributes=True)


class HoldingLotResponse(BaseModel):
    id: str
    account_id: str
    symbol: str
    purchase_date: date
    quantity: Decimal
    quantity_remaining: Decimal
    cost_per_share: Decimal
    total_cost: Decimal
    source_transaction_id: str | None = None
    status: str
    disposals: list[LotDisposalResponse] = []

    model_config = ConfigDict(from_attributes=True)


class LotSummaryResponse(BaseModel):
    """FIFO view of one symbol's position."""

    symbol: str
    open_lot_count: int
    lotted_quantity: Decimal
    fifo_cost_basis: Decimal
    average_cost: Decimal | None = None
    realized_gain: Decimal
    market_price: Decimal | None = None
    market_value: Decimal | None = None
    unrealized_gain: Decimal | None = None

    model_config = ConfigDict(from_attributes=True)


class LotConsumptionResponse(BaseModel):
    lot_id: str
    quantity: Decimal
    cost_per_share: Decimal
    realized_gain: Decimal

    model_config = ConfigDict(from_attributes=True)


class SellResultResponse(BaseModel):
    symbol: str
    quantity_sold: Decimal
    sale_price: Decimal
    cost_basis: Decimal
    proceeds: Decimal
    realized_gain: Decimal
    lots_touched: list[LotConsumptionResponse]

    model_config = ConfigDict(from_attributes=True)
