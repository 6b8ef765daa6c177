"""Reconciliation API endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from api.helpers import get_ledger_service
from database import get_db
from schemas.reconciliation import FixResponse, ReconciliationResponse
from services.ledger_service import LedgerService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reconciliation", tags=["reconciliation"])


@router.get("/{user_id}", response_model=ReconciliationResponse)
def run_reconciliation(
    user_id: str,
    db: Session = Depends(get_db),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Report-only reconciliation of a user's accounts. Nothing is modified."""
    report = ledger.run_reconciliation(db, user_id)
    return ReconciliationResponse(
        clean=report.clean,
        checks=report.checks,
        discrepancies=report.discrepancies,
        duplicates=report.duplicates,
        suggestions=report.suggestions,
    )


@router.post("/{user_id}/fixes/{suggestion_id}", response_model=FixResponse)
def apply_fix(
    user_id: str,
    suggestion_id: str,
    db: Session = Depends(get_db),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Apply a suggestion's automatic fix.

    Raises:
        HTTPException:
            - 404 Not Found: no current suggestion with that id
            - 400 Bad Request: the suggestion needs manual review
    """
    try:
        suggestion = ledger.find_suggestion(db, user_id, suggestion_id)
        with ledger.account_write(db, suggestion.account_id):
            message = ledger.apply_fix(db, user_id, suggestion_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Suggestion not found")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return FixResponse(suggestion_id=suggestion_id, message=message)
