"""Price store API endpoints."""

import logging
from datetime import date, timedelta

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.helpers import get_ledger_service, raise_http
from database import get_db
from schemas.price import BackfillRequest, BackfillResponse, PriceGapResponse, PricePointResponse
from services.exceptions import LedgerError
from services.ledger_service import LedgerService
from services.price_history_service import PriceHistoryService
from utils.ticker import normalize_symbol

logger = logging.getLogger(__name__)

router = APIRouter(tags=["prices"])


@router.get("/api/prices/{symbol}", response_model=PricePointResponse)
def get_price(
    symbol: str,
    on: date | None = Query(None, description="Valuation date (defaults to today)"),
    db: Session = Depends(get_db),
):
    """Price for a symbol on a date.

    Falls back to interpolation when no row exists for the date; the
    response's ``quality`` tells the caller how much to trust it.
    """
    return PriceHistoryService.get_price(db, normalize_symbol(symbol), on or date.today())


@router.get("/api/prices/{symbol}/gaps", response_model=list[PriceGapResponse])
def get_gaps(
    symbol: str,
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    db: Session = Depends(get_db),
):
    end_date = end_date or date.today()
    start_date = start_date or end_date - timedelta(days=30)
    return PriceHistoryService.find_gaps(db, normalize_symbol(symbol), start_date, end_date)


@router.post("/api/accounts/{account_id}/prices/backfill", response_model=BackfillResponse)
def backfill_prices(
    account_id: str,
    body: BackfillRequest | None = None,
    db: Session = Depends(get_db),
    ledger: LedgerService = Depends(get_ledger_service),
):
    """Fetch missing daily prices for every symbol the account has traded."""
    body = body or BackfillRequest()
    try:
        report = ledger.backfill_prices(
            db,
            account_id=account_id,
            symbols=body.symbols,
            start_date=body.start_date,
            end_date=body.end_date,
            max_symbols=body.max_symbols,
        )
    except LedgerError as e:
        raise_http(e)
    db.commit()
    return BackfillResponse(
        requested=report.requested,
        processed=report.processed,
        up_to_date=report.up_to_date,
        remaining=report.remaining,
        results=report.results,
        errors=report.errors,
        cancelled=report.cancelled,
    )
