"""Daily account snapshots: valuation history built from the log and price store."""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from models import AccountSnapshot, Transaction
from services.holdings_service import PRICE_SOURCE_COST_BASIS, HoldingsService
from services.price_history_service import PriceHistoryService

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
DEFAULT_HISTORY_DAYS = 30
UNCLASSIFIED = "unclassified"


@dataclass
class SnapshotValues:
    account_id: str
    snapshot_date: date
    cash_balance: Decimal = ZERO
    holdings_value: Decimal = ZERO
    cost_basis: Decimal = ZERO
    holdings: dict[str, dict[str, str]] = field(default_factory=dict)
    asset_breakdown: dict[str, str] = field(default_factory=dict)

    @property
    def total_value(self) -> Decimal:
        return self.cash_balance + self.holdings_value


class SnapshotService:
    """Computes and stores one valuation per account per day.

    Only stored prices are used (exact, then interpolated); a symbol the
    store knows nothing about is valued at its average cost. Snapshots
    never call an oracle.
    """

    @staticmethod
    def _transactions_through(db: Session, account_id: str, on_date: date) -> list[Transaction]:
        return (
            db.query(Transaction)
            .filter(Transaction.account_id == account_id, Transaction.transaction_date <= on_date)
            .order_by(Transaction.transaction_date.asc(), Transaction.sequence.asc())
            .all()
        )

    @staticmethod
    def calculate_snapshot(db: Session, account_id: str, on_date: date) -> SnapshotValues:
        """Value the account as of ``on_date`` without writing anything."""
        transactions = SnapshotService._transactions_through(db, account_id, on_date)
        values = SnapshotValues(account_id=account_id, snapshot_date=on_date)
        values.cash_balance = sum((Decimal(t.amount) for t in transactions), ZERO)

        breakdown: dict[str, Decimal] = {}
        for symbol, calc in sorted(HoldingsService.calculate_holdings(transactions).items()):
            point = PriceHistoryService.get_price(db, symbol, on_date)
            if point.price is not None:
                price, source = point.price, point.source
            else:
                price, source = calc.average_cost, PRICE_SOURCE_COST_BASIS
            value = calc.quantity * price

            values.holdings_value += value
            values.cost_basis += calc.cost_basis
            asset_type = (calc.asset_type or UNCLASSIFIED).lower()
            breakdown[asset_type] = breakdown.get(asset_type, ZERO) + value
            values.holdings[symbol] = {
                "quantity": str(calc.quantity),
                "price": str(price),
                "value": str(value),
                "price_source": source,
            }

        if values.cash_balance:
            breakdown["cash"] = breakdown.get("cash", ZERO) + values.cash_balance
        values.asset_breakdown = {k: str(v) for k, v in sorted(breakdown.items())}
        return values

    @staticmethod
    def get_snapshot(db: Session, account_id: str, snapshot_date: date) -> Optional[AccountSnapshot]:
        return (
            db.query(AccountSnapshot)
            .filter(AccountSnapshot.account_id == account_id, AccountSnapshot.snapshot_date == snapshot_date)
            .first()
        )

    @staticmethod
    def generate_snapshot(db: Session, account_id: str, snapshot_date: Optional[date] = None) -> AccountSnapshot:
        """Compute and store the snapshot for one day, replacing any existing row."""
        snapshot_date = snapshot_date or date.today()
        values = SnapshotService.calculate_snapshot(db, account_id, snapshot_date)

        row = SnapshotService.get_snapshot(db, account_id, snapshot_date)
        if row is None:
            row = AccountSnapshot(account_id=account_id, snapshot_date=snapshot_date)
            db.add(row)
        row.cash_balance = values.cash_balance
        row.holdings_value = values.holdings_value
        row.cost_basis = values.cost_basis
        row.total_value = values.total_value
        row.holdings = values.holdings
        row.asset_breakdown = values.asset_breakdown
        db.flush()

        logger.debug(
            "Snapshot for account %s on %s: total %s", account_id, snapshot_date, values.total_value
        )
        return row

    @staticmethod
    def refresh_snapshots(
        db: Session, account_id: str, since: date, today: Optional[date] = None
    ) -> list[AccountSnapshot]:
        """Regenerate stored snapshots dated ``since`` or later, plus today's.

        Called after the log changes so no stored day disagrees with it.
        """
        today = today or date.today()
        stale = (
            db.query(AccountSnapshot.snapshot_date)
            .filter(AccountSnapshot.account_id == account_id, AccountSnapshot.snapshot_date >= since)
            .all()
        )
        dates = sorted({d for (d,) in stale} | {today})
        return [SnapshotService.generate_snapshot(db, account_id, d) for d in dates]

    @staticmethod
    def get_snapshots(
        db: Session,
        account_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[AccountSnapshot]:
        """Stored snapshots in [start_date, end_date], oldest first.

        Defaults to the last 30 days.
        """
        end_date = end_date or date.today()
        start_date = start_date or end_date - timedelta(days=DEFAULT_HISTORY_DAYS)
        return (
            db.query(AccountSnapshot)
            .filter(
                AccountSnapshot.account_id == account_id,
                AccountSnapshot.snapshot_date >= start_date,
                AccountSnapshot.snapshot_date <= end_date,
            )
            .order_by(AccountSnapshot.snapshot_date.asc())
            .all()
        )

    @staticmethod
    def backfill_snapshots(
        db: Session, account_id: str, start_date: date, end_date: Optional[date] = None
    ) -> int:
        """Create snapshots for days in range that have none; existing days are left alone.

        Returns the number of snapshots created.
        """
        end_date = end_date or date.today()
        if start_date > end_date:
            raise ValueError("start_date must not be after end_date")

        existing = {
            d
            for (d,) in db.query(AccountSnapshot.snapshot_date).filter(
                AccountSnapshot.account_id == account_id,
                AccountSnapshot.snapshot_date >= start_date,
                AccountSnapshot.snapshot_date <= end_date,
            )
        }
        created = 0
        day = start_date
        while day <= end_date:
            if day not in existing:
                SnapshotService.generate_snapshot(db, account_id, day)
                created += 1
            day += timedelta(days=1)

        logger.info(
            "Backfilled %d snapshots for account %s (%s to %s)", created, account_id, start_date, end_date
        )
        return created
