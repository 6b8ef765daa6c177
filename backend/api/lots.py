"""Lot API endpoints."""

import logging
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.helpers import get_or_404
from database import get_db
from models import Account
from schemas.lot import HoldingLotResponse, LotSummaryResponse
from services.lot_ledger_service import LotLedgerService
from utils.ticker import normalize_symbol

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/accounts", tags=["lots"])


@router.get("/{account_id}/lots", response_model=list[HoldingLotResponse])
def list_lots(
    account_id: str,
    include_closed: bool = Query(True),
    db: Session = Depends(get_db),
):
    get_or_404(db, Account, account_id, "Account not found")
    return LotLedgerService.get_lots_for_account(db, account_id, include_closed=include_closed)


@router.get("/{account_id}/lots/summary", response_model=list[LotSummaryResponse])
def lot_summary(
    account_id: str,
    symbol: str | None = Query(None),
    market_price: Decimal | None = Query(None, description="Price for unrealized gain; requires symbol"),
    db: Session = Depends(get_db),
):
    """Per-symbol FIFO summaries for the account's lots."""
    get_or_404(db, Account, account_id, "Account not found")
    if symbol:
        symbols = [normalize_symbol(symbol)]
    else:
        symbols = sorted({lot.symbol for lot in LotLedgerService.get_lots_for_account(db, account_id)})
    return [
        LotLedgerService.get_lot_summary(db, account_id, s, market_price=market_price if symbol else None)
        for s in symbols
    ]
