"""Pydantic schemas for the transaction log.

Incoming transactions are a tagged union keyed on ``type``; each variant
declares exactly the fields its kind needs so malformed rows are rejected
before they reach the ledger.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator


class _TransactionBase(BaseModel):
    transaction_date: date
    description: str | None = None
    transaction_metadata: dict[str, Any] | None = None


class _TradeBase(_TransactionBase):
    symbol: str = Field(min_length=1)
    quantity: Decimal = Field(gt=0)
    price_per_unit: Decimal = Field(gt=0)
    # Defaults to quantity * price_per_unit when omitted
    amount: Decimal | None = None
    asset_type: str | None = None

    @field_validator("symbol")
    @classmethod
    def upper_symbol(cls, v: str) -> str:
        return v.strip().upper()


class BuyTransaction(_TradeBase):
    type: Literal["buy"] = "buy"


class SellTransaction(_TradeBase):
    type: Literal["sell"] = "sell"


class SplitTransaction(_TransactionBase):
    """A stock split; ``ratio`` of 2 turns 10 shares into 20."""

    type: Literal["split"] = "split"
    symbol: str = Field(min_length=1)
    ratio: Decimal = Field(gt=0)
    asset_type: str | None = None

    @field_validator("symbol")
    @classmethod
    def upper_symbol(cls, v: str) -> str:
        return v.strip().upper()


class _CashBase(_TransactionBase):
    amount: Decimal
    symbol: str | None = None

    @field_validator("amount")
    @classmethod
    def non_zero(cls, v: Decimal) -> Decimal:
        if v == 0:
            raise ValueError("amount must be non-zero")
        return v

    @field_validator("symbol")
    @classmethod
    def upper_symbol(cls, v: str | None) -> str | None:
        return v.strip().upper() if v else None


class DividendTransaction(_CashBase):
    type: Literal["dividend"] = "dividend"


class InterestTransaction(_CashBase):
    type: Literal["interest"] = "interest"


class DepositTransaction(_CashBase):
    type: Literal["deposit"] = "deposit"


class WithdrawalTransaction(_CashBase):
    type: Literal["withdrawal"] = "withdrawal"


class FeeTransaction(_CashBase):
    type: Literal["fee"] = "fee"


TransactionCreate = Annotated[
    Union[
        BuyTransaction,
        SellTransaction,
        SplitTransaction,
        DividendTransaction,
        InterestTransaction,
        DepositTransaction,
        WithdrawalTransaction,
        FeeTransaction,
    ],
    Field(discriminator="type"),
]

transaction_adapter: TypeAdapter[TransactionCreate] = TypeAdapter(TransactionCreate)


def parse_transaction(data: dict[str, Any]) -> TransactionCreate:
    """Validate a raw dict into its transaction variant."""
    return transaction_adapter.validate_python(data)


class TransactionResponse(BaseModel):
    id: str
    account_id: str
    sequence: int
    type: str
    symbol: str | None = None
    quantity: Decimal | None = None
    price_per_unit: Decimal | None = None
    amount: Decimal
    transaction_date: date
    asset_type: str | None = None
    description: str | None = None
    transaction_metadata: dict[str, Any] | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionRecorded(BaseModel):
    """Response for an appended transaction, with non-blocking warnings."""

    transaction: TransactionResponse
    warnings: list[str] = []


class SellRequest(BaseModel):
    symbol: str = Field(min_length=1)
    quantity: Decimal = Field(gt=0)
    price_per_unit: Decimal = Field(gt=0)
    transaction_date: date
    description: str | None = None


class RollbackRequest(BaseModel):
    reason: str | None = None
