"""Sync error log API endpoints."""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.helpers import get_ledger_service, get_or_404
from database import get_db
from models import SyncError
from schemas.sync_error import RecoveryResponse, SyncErrorResponse
from services.ledger_service import LedgerService
from services.sync_error_service import SyncErrorService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sync-errors", tags=["sync-errors"])


@router.get("", response_model=list[SyncErrorResponse])
def list_sync_errors(
    include_resolved: bool = Query(False),
    account_id: str | None = Query(None),
    db: Session = Depends(get_db),
):
    if account_id is not None and not include_resolved:
        return SyncErrorService.get_unresolved(db, account_id)
    errors = SyncErrorService.list_errors(db, include_resolved=include_resolved)
    if account_id is not None:
        errors = [e for e in errors if e.account_id == account_id]
    return errors


@router.post("/{error_id}/recover", response_model=RecoveryResponse)
def recover_sync_error(
    error_id: str,
    db: Session = Depends(get_db),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Run the automatic recovery action for one recorded error."""
    error = get_or_404(db, SyncError, error_id, "Sync error not found")
    with ledger.account_write(db, error.account_id):
        result = ledger.recover_error(db, error)
    return result
