"""Pydantic schemas for the sync error log."""

from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict


class SyncErrorResponse(BaseModel):
    id: str
    error_type: str
    message: str
    context: dict[str, Any] | None = None
    account_id: str | None = None
    resolved: bool
    resolution: str | None = None
    created_at: datetime
    resolved_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class RecoveryResponse(BaseModel):
    success: bool
    message: str
    attempts: int

    model_config = ConfigDict(from_attributes=True)


class RollbackResponse(BaseModel):
    transaction_id: str
    account_id: str
    reversed_amount: Decimal

    model_config = ConfigDict(from_attributes=True)
