"""Pydantic schemas for daily account snapshots."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, model_validator


class SnapshotResponse(BaseModel):
    account_id: str
    snapshot_date: date
    cash_balance: Decimal
    holdings_value: Decimal
    cost_basis: Decimal
    total_value: Decimal
    holdings: dict[str, dict[str, str]] | None = None
    asset_breakdown: dict[str, str] | None = None

    model_config = ConfigDict(from_attributes=True)


class SnapshotRequest(BaseModel):
    snapshot_date: date | None = None


class SnapshotBackfillRequest(BaseModel):
    start_date: date
    end_date: date | None = None

    @model_validator(mode="after")
    def check_range(self) -> "SnapshotBackfillRequest":
        if self.end_date is not None and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class SnapshotBackfillResponse(BaseModel):
    account_id: str
    start_date: date
    end_date: date
    created: int
