"""Pydantic schemas for reconciliation reports."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class ReconciliationCheckResponse(BaseModel):
    account_id: str
    check_type: str
    expected: Decimal
    actual: Decimal
    difference: Decimal
    percent_difference: Decimal | None = None
    passed: bool
    severity: str
    message: str

    model_config = ConfigDict(from_attributes=True)


class DiscrepancyResponse(BaseModel):
    account_id: str
    symbol: str
    kind: str
    expected: Decimal
    actual: Decimal
    difference: Decimal
    severity: str
    message: str

    model_config = ConfigDict(from_attributes=True)


class DuplicateGroupResponse(BaseModel):
    account_id: str
    transaction_date: date
    amount: Decimal
    type: str
    transaction_ids: list[str]

    model_config = ConfigDict(from_attributes=True)


class SuggestionResponse(BaseModel):
    id: str
    account_id: str
    kind: str
    severity: str
    title: str
    description: str
    can_auto_fix: bool

    model_config = ConfigDict(from_attributes=True)


class ReconciliationResponse(BaseModel):
    clean: bool
    checks: list[ReconciliationCheckResponse]
    discrepancies: list[DiscrepancyResponse]
    duplicates: list[DuplicateGroupResponse]
    suggestions: list[SuggestionResponse]

    model_config = ConfigDict(from_attributes=True)


class FixResponse(BaseModel):
    suggestion_id: str
    message: str
