"""Account, transaction, holdings and snapshot API endpoints."""

import logging
from datetime import date
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from api.helpers import get_ledger_service, get_or_404, raise_http
from database import get_db
from integrations.exceptions import ProviderError
from models import Account, Transaction
from schemas.account import AccountCreate, AccountResponse
from schemas.holding import HoldingResponse, ReconstructionResponse
from schemas.lot import SellResultResponse
from schemas.snapshot import (
    SnapshotBackfillRequest,
    SnapshotBackfillResponse,
    SnapshotRequest,
    SnapshotResponse,
)
from schemas.sync_error import RollbackResponse
from schemas.transaction import (
    RollbackRequest,
    SellRequest,
    TransactionRecorded,
    TransactionResponse,
)
from services.account_service import AccountService
from services.exceptions import LedgerError
from services.ledger_service import LedgerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/accounts", tags=["accounts"])


@router.post("", response_model=AccountResponse, status_code=201)
def create_account(body: AccountCreate, db: Session = Depends(get_db)):
    account = AccountService.create_account(
        db,
        user_id=body.user_id,
        name=body.name,
        account_type=body.account_type.value if body.account_type else None,
        opening_balance=body.opening_balance,
    )
    db.commit()
    db.refresh(account)
    return account


@router.get("", response_model=list[AccountResponse])
def list_accounts(
    user_id: str | None = Query(None, description="Only accounts owned by this user"),
    db: Session = Depends(get_db),
):
    return AccountService.list_accounts(db, user_id)


@router.get("/{account_id}", response_model=AccountResponse)
def get_account(account_id: str, db: Session = Depends(get_db)):
    return get_or_404(db, Account, account_id, "Account not found")


# --- Transactions ---


@router.post("/{account_id}/transactions", response_model=TransactionRecorded, status_code=201)
def record_transaction(
    account_id: str,
    body: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Append a transaction and rebuild the holdings it affects.

    Raises:
        HTTPException:
            - 404 Not Found: account does not exist
            - 409 Conflict: the transaction would oversell a position
            - 422 Unprocessable Entity: validation failed
    """
    with ledger.account_write(db, account_id):
        try:
            result = ledger.record_transaction(db, account_id, body)
        except LedgerError as e:
            raise_http(e)
    db.refresh(result.transaction)
    warnings = list(result.warnings)
    if result.sync_error is not None:
        warnings.append(f"Holdings update deferred: {result.sync_error.message}")
    return TransactionRecorded(
        transaction=TransactionResponse.model_validate(result.transaction),
        warnings=warnings,
    )


@router.get("/{account_id}/transactions", response_model=list[TransactionResponse])
def list_transactions(
    account_id: str,
    db: Session = Depends(get_db),
    ledger: LedgerService = Depends(get_ledger_service),
):
    try:
        return ledger.list_transactions(db, account_id)
    except LedgerError as e:
        raise_http(e)


@router.post(
    "/{account_id}/transactions/{transaction_id}/rollback",
    response_model=RollbackResponse,
)
def rollback_transaction(
    account_id: str,
    transaction_id: str,
    body: RollbackRequest | None = None,
    db: Session = Depends(get_db),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Remove an erroneous transaction and rebuild lots and holdings."""
    get_or_404(db, Account, account_id, "Account not found")
    tx = get_or_404(db, Transaction, transaction_id, "Transaction not found")
    if tx.account_id != account_id:
        raise HTTPException(status_code=404, detail="Transaction not found")
    with ledger.account_write(db, account_id):
        try:
            result = ledger.rollback_transaction(db, transaction_id, body.reason if body else None)
        except LedgerError as e:
            raise_http(e)
    return result


@router.post("/{account_id}/sell", response_model=SellResultResponse)
def sell_shares(
    account_id: str,
    body: SellRequest,
    db: Session = Depends(get_db),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Sell shares FIFO and return the realized gain breakdown.

    Raises:
        HTTPException: 409 Conflict when open lots cannot cover the sale.
    """
    with ledger.account_write(db, account_id):
        try:
            result = ledger.sell_shares(
                db,
                account_id,
                body.symbol,
                body.quantity,
                body.price_per_unit,
                body.transaction_date,
                description=body.description,
            )
        except LedgerError as e:
            raise_http(e)
    return result.sell


# --- Holdings ---


@router.post("/{account_id}/reconstruct", response_model=ReconstructionResponse)
def reconstruct_account(
    account_id: str,
    db: Session = Depends(get_db),
    ledger: LedgerService = Depends(get_ledger_service),
):
    with ledger.account_write(db, account_id):
        try:
            result = ledger.reconstruct_account(db, account_id)
        except (LedgerError, ProviderError) as e:
            raise_http(e)
    return ReconstructionResponse(
        account_id=result.account_id,
        holdings=len(result.holdings),
        created=result.created,
        updated=result.updated,
        deleted=result.deleted,
        price_sources=result.price_sources,
    )


@router.get("/{account_id}/holdings", response_model=list[HoldingResponse])
def get_holdings(
    account_id: str,
    db: Session = Depends(get_db),
    ledger: LedgerService = Depends(get_ledger_service),
):
    try:
        return ledger.get_holdings(db, account_id)
    except LedgerError as e:
        raise_http(e)


# --- Snapshots ---


@router.get("/{account_id}/snapshots", response_model=list[SnapshotResponse])
def list_snapshots(
    account_id: str,
    start_date: date | None = Query(None),
    end_date: date | None = Query(None, description="Defaults to today; the window defaults to 30 days"),
    db: Session = Depends(get_db),
    ledger: LedgerService = Depends(get_ledger_service),
):
    try:
        return ledger.get_snapshots(db, account_id, start_date, end_date)
    except LedgerError as e:
        raise_http(e)


@router.post("/{account_id}/snapshots", response_model=SnapshotResponse, status_code=201)
def create_snapshot(
    account_id: str,
    body: SnapshotRequest | None = None,
    db: Session = Depends(get_db),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Generate (or regenerate) the account's snapshot for one day."""
    with ledger.account_write(db, account_id):
        try:
            snapshot = ledger.snapshot_account(db, account_id, body.snapshot_date if body else None)
        except LedgerError as e:
            raise_http(e)
    db.refresh(snapshot)
    return snapshot


@router.post("/{account_id}/snapshots/backfill", response_model=SnapshotBackfillResponse)
def backfill_snapshots(
    account_id: str,
    body: SnapshotBackfillRequest,
    db: Session = Depends(get_db),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Create the missing daily snapshots in a date range."""
    end_date = body.end_date or date.today()
    with ledger.account_write(db, account_id):
        try:
            created = ledger.backfill_snapshots(db, account_id, body.start_date, end_date)
        except LedgerError as e:
            raise_http(e)
    return SnapshotBackfillResponse(
        account_id=account_id, start_date=body.start_date, end_date=end_date, created=created
    )
