"""Pydantic schemas for accounts."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class AccountType(str, Enum):
    """Valid account types."""

    brokerage = "brokerage"
    retirement = "retirement"
    bank = "bank"
    crypto = "crypto"
    other = "other"


class AccountCreate(BaseModel):
    user_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    account_type: AccountType | None = None
    opening_balance: Decimal = Decimal("0")


class AccountResponse(BaseModel):
    id: str
    user_id: str
    name: str
    account_type: str | None = None
    balance: Decimal
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
