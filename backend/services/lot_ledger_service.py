"""Service for FIFO lot-based cost basis tracking.

Buys open lots, sells consume the oldest open lots first, splits rescale
open lots. Everything can be rebuilt from the transaction log: ``replay``
computes the lots in memory and ``rebuild_lots`` writes the result, so a
failing sell never leaves the stored lots half-updated.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Protocol, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import HoldingLot, LotDisposal, Transaction, derive_uuid, generate_uuid
from services.exceptions import InsufficientSharesError

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
# Quantities at or below this are treated as zero
EPSILON = Decimal("0.00001")


class _OpenLot(Protocol):
    id: str
    quantity_remaining: Decimal
    cost_per_share: Decimal


@dataclass
class LotConsumption:
    lot_id: str
    quantity: Decimal
    cost_per_share: Decimal
    realized_gain: Decimal


@dataclass
class SellResult:
    symbol: str
    quantity_sold: Decimal
    sale_price: Decimal
    cost_basis: Decimal
    proceeds: Decimal
    realized_gain: Decimal
    lots_touched: list[LotConsumption] = field(default_factory=list)


@dataclass
class LotState:
    """In-memory lot produced by a replay."""

    id: str
    account_id: str
    symbol: str
    purchase_date: date
    quantity: Decimal
    quantity_remaining: Decimal
    cost_per_share: Decimal
    total_cost: Decimal
    source_transaction_id: str | None
    sequence: int

    @property
    def status(self) -> str:
        return "closed" if self.quantity_remaining <= ZERO else "open"


@dataclass
class DisposalState:
    id: str
    lot_id: str
    account_id: str
    symbol: str
    sell_transaction_id: str | None
    disposal_date: date
    quantity: Decimal
    cost_per_share: Decimal
    proceeds_per_unit: Decimal
    realized_gain: Decimal


@dataclass
class LotReplay:
    lots: list[LotState] = field(default_factory=list)
    disposals: list[DisposalState] = field(default_factory=list)
    # sell transaction id -> result
    sells: dict[str, SellResult] = field(default_factory=dict)

    def open_quantity(self, symbol: str) -> Decimal:
        return sum(
            (lot.quantity_remaining for lot in self.lots if lot.symbol == symbol and lot.status == "open"),
            ZERO,
        )


@dataclass
class LotSummary:
    symbol: str
    open_lot_count: int
    lotted_quantity: Decimal
    fifo_cost_basis: Decimal
    average_cost: Decimal | None
    realized_gain: Decimal
    market_price: Decimal | None = None
    market_value: Decimal | None = None
    unrealized_gain: Decimal | None = None


def lot_id_for(transaction_id: str) -> str:
    return derive_uuid("lot", transaction_id)


def disposal_id_for(transaction_id: str, lot_id: str) -> str:
    return derive_uuid("disposal", transaction_id, lot_id)


def plan_fifo(
    symbol: str, open_lots: Sequence[_OpenLot], quantity: Decimal
) -> list[tuple[_OpenLot, Decimal]]:
    """Decide how much to take from each lot without touching any of them.

    ``open_lots`` must already be in FIFO order.

    Raises:
        InsufficientSharesError: if the lots cannot cover ``quantity``.
    """
    available = sum((Decimal(lot.quantity_remaining) for lot in open_lots), ZERO)
    if quantity - available > EPSILON:
        raise InsufficientSharesError(symbol, quantity, available)

    plan: list[tuple[_OpenLot, Decimal]] = []
    remaining = quantity
    for lot in open_lots:
        if remaining <= ZERO:
            break
        take = min(remaining, Decimal(lot.quantity_remaining))
        if take <= ZERO:
            continue
        plan.append((lot, take))
        remaining -= take
    return plan


class LotLedgerService:
    """FIFO lot creation, consumption, replay and queries."""

    # --- Pure replay ---

    @staticmethod
    def replay(transactions: Iterable[Transaction]) -> LotReplay:
        """Rebuild lots from a transaction log without touching the database.

        Transactions are processed in (transaction_date, sequence) order.

        Raises:
            InsufficientSharesError: if any sell in the log oversells.
        """
        result = LotReplay()
        ordered = sorted(transactions, key=lambda t: (t.transaction_date, t.sequence))

        for tx in ordered:
            if not tx.symbol or tx.type not in ("buy", "sell", "split"):
                continue
            symbol = tx.symbol

            if tx.type == "buy":
                qty = Decimal(tx.quantity)
                price = Decimal(tx.price_per_unit or 0)
                result.lots.append(
                    LotState(
                        id=lot_id_for(tx.id),
                        account_id=tx.account_id,
                        symbol=symbol,
                        purchase_date=tx.transaction_date,
                        quantity=qty,
                        quantity_remaining=qty,
                        cost_per_share=price,
                        total_cost=qty * price,
                        source_transaction_id=tx.id,
                        sequence=tx.sequence,
                    )
                )

            elif tx.type == "sell":
                qty = Decimal(tx.quantity)
                price = Decimal(tx.price_per_unit or 0)
                open_lots = [
                    lot for lot in result.lots if lot.symbol == symbol and lot.status == "open"
                ]
                plan = plan_fifo(symbol, open_lots, qty)
                sell = _sell_result(symbol, qty, price, plan)
                for lot, take in plan:
                    lot.quantity_remaining -= take
                    result.disposals.append(
                        DisposalState(
                            id=disposal_id_for(tx.id, lot.id),
                            lot_id=lot.id,
                            account_id=tx.account_id,
                            symbol=symbol,
                            sell_transaction_id=tx.id,
                            disposal_date=tx.transaction_date,
                            quantity=take,
                            cost_per_share=lot.cost_per_share,
                            proceeds_per_unit=price,
                            realized_gain=take * (price - lot.cost_per_share),
                        )
                    )
                result.sells[tx.id] = sell

            else:
                ratio = Decimal(tx.quantity)
                for lot in result.lots:
                    if lot.symbol == symbol and lot.status == "open":
                        lot.quantity *= ratio
                        lot.quantity_remaining *= ratio
                        lot.cost_per_share /= ratio

        return result

    @staticmethod
    def rebuild_lots(
        db: Session, account_id: str, transactions: list[Transaction] | None = None
    ) -> LotReplay:
        """Replace the account's stored lots with a fresh replay of its log.

        Rows are updated in place by their derived ids, so rebuilding an
        unchanged log writes identical rows.
        """
        if transactions is None:
            from services.transaction_service import TransactionService

            transactions = TransactionService.list_for_account(db, account_id)

        replay = LotLedgerService.replay(transactions)

        existing_lots = {
            lot.id: lot for lot in db.query(HoldingLot).filter_by(account_id=account_id).all()
        }
        existing_disposals = {
            d.id: d for d in db.query(LotDisposal).filter_by(account_id=account_id).all()
        }

        keep_disposals = {d.id for d in replay.disposals}
        for disposal_id, row in existing_disposals.items():
            if disposal_id not in keep_disposals:
                db.delete(row)
        keep_lots = {lot.id for lot in replay.lots}
        for lot_id, row in existing_lots.items():
            if lot_id not in keep_lots:
                db.delete(row)
        db.flush()

        for state in replay.lots:
            row = existing_lots.get(state.id)
            if row is None:
                row = HoldingLot(id=state.id)
                db.add(row)
            row.account_id = state.account_id
            row.symbol = state.symbol
            row.purchase_date = state.purchase_date
            row.quantity = state.quantity
            row.quantity_remaining = state.quantity_remaining
            row.cost_per_share = state.cost_per_share
            row.total_cost = state.total_cost
            row.source_transaction_id = state.source_transaction_id
            row.sequence = state.sequence
            row.status = state.status
        db.flush()

        for state in replay.disposals:
            row = existing_disposals.get(state.id)
            if row is None:
                row = LotDisposal(id=state.id)
                db.add(row)
            row.holding_lot_id = state.lot_id
            row.account_id = state.account_id
            row.symbol = state.symbol
            row.sell_transaction_id = state.sell_transaction_id
            row.disposal_date = state.disposal_date
            row.quantity = state.quantity
            row.cost_per_share = state.cost_per_share
            row.proceeds_per_unit = state.proceeds_per_unit
            row.realized_gain = state.realized_gain
        db.flush()

        logger.info(
            "Rebuilt lots for account %s: %d lots, %d disposals",
            account_id, len(replay.lots), len(replay.disposals),
        )
        return replay

    # --- Incremental operations ---

    @staticmethod
    def apply_buy(
        db: Session,
        account_id: str,
        symbol: str,
        purchase_date: date,
        quantity: Decimal,
        price: Decimal,
        transaction_id: str | None = None,
        sequence: int | None = None,
    ) -> HoldingLot:
        """Open a new lot. Never merges into an existing one."""
        if quantity <= ZERO:
            raise ValueError("quantity must be positive")
        if sequence is None:
            current = (
                db.query(func.max(HoldingLot.sequence))
                .filter(HoldingLot.account_id == account_id)
                .scalar()
            )
            sequence = (current or 0) + 1

        lot = HoldingLot(
            id=lot_id_for(transaction_id) if transaction_id else generate_uuid(),
            account_id=account_id,
            symbol=symbol,
            purchase_date=purchase_date,
            quantity=quantity,
            quantity_remaining=quantity,
            cost_per_share=price,
            total_cost=quantity * price,
            source_transaction_id=transaction_id,
            status="open",
            sequence=sequence,
        )
        db.add(lot)
        db.flush()
        logger.info(
            "Opened lot: %s shares of %s @ %s in account %s",
            quantity, symbol, price, account_id,
        )
        return lot

    @staticmethod
    def apply_sell(
        db: Session,
        account_id: str,
        symbol: str,
        quantity: Decimal,
        sale_price: Decimal,
        sale_date: date,
        transaction_id: str | None = None,
    ) -> SellResult:
        """Consume open lots oldest first.

        The whole plan is computed before any lot is modified.

        Raises:
            InsufficientSharesError: if open lots cannot cover ``quantity``;
                no lot is changed in that case.
        """
        open_lots = LotLedgerService.get_open_lots(db, account_id, symbol)
        plan = plan_fifo(symbol, open_lots, quantity)
        result = _sell_result(symbol, quantity, sale_price, plan)

        for lot, take in plan:
            lot.quantity_remaining = Decimal(lot.quantity_remaining) - take
            if lot.quantity_remaining <= ZERO:
                lot.quantity_remaining = ZERO
                lot.status = "closed"
            cost = Decimal(lot.cost_per_share)
            db.add(
                LotDisposal(
                    id=disposal_id_for(transaction_id, lot.id) if transaction_id else generate_uuid(),
                    holding_lot_id=lot.id,
                    account_id=account_id,
                    symbol=symbol,
                    sell_transaction_id=transaction_id,
                    disposal_date=sale_date,
                    quantity=take,
                    cost_per_share=cost,
                    proceeds_per_unit=sale_price,
                    realized_gain=take * (sale_price - cost),
                )
            )
        db.flush()

        logger.info(
            "Sold %s %s across %d lots in account %s: cost %s, gain %s",
            quantity, symbol, len(plan), account_id, result.cost_basis, result.realized_gain,
        )
        return result

    @staticmethod
    def apply_split(db: Session, account_id: str, symbol: str, ratio: Decimal) -> list[HoldingLot]:
        """Scale open lots by ``ratio``; total cost is unchanged."""
        if ratio <= ZERO:
            raise ValueError("split ratio must be positive")
        lots = LotLedgerService.get_open_lots(db, account_id, symbol)
        for lot in lots:
            lot.quantity = Decimal(lot.quantity) * ratio
            lot.quantity_remaining = Decimal(lot.quantity_remaining) * ratio
            lot.cost_per_share = Decimal(lot.cost_per_share) / ratio
        db.flush()
        return lots

    # --- Queries ---

    @staticmethod
    def get_open_lots(db: Session, account_id: str, symbol: str | None = None) -> list[HoldingLot]:
        """Open lots in FIFO order (purchase date, then insertion sequence)."""
        query = db.query(HoldingLot).filter(
            HoldingLot.account_id == account_id, HoldingLot.status == "open"
        )
        if symbol is not None:
            query = query.filter(HoldingLot.symbol == symbol)
        return query.order_by(HoldingLot.purchase_date.asc(), HoldingLot.sequence.asc()).all()

    @staticmethod
    def get_lots_for_account(
        db: Session, account_id: str, include_closed: bool = True
    ) -> list[HoldingLot]:
        query = db.query(HoldingLot).filter(HoldingLot.account_id == account_id)
        if not include_closed:
            query = query.filter(HoldingLot.status == "open")
        return query.order_by(
            HoldingLot.symbol.asc(), HoldingLot.purchase_date.asc(), HoldingLot.sequence.asc()
        ).all()

    @staticmethod
    def get_disposals(db: Session, account_id: str, symbol: str | None = None) -> list[LotDisposal]:
        query = db.query(LotDisposal).filter(LotDisposal.account_id == account_id)
        if symbol is not None:
            query = query.filter(LotDisposal.symbol == symbol)
        return query.order_by(LotDisposal.disposal_date.asc()).all()

    @staticmethod
    def open_quantity(db: Session, account_id: str, symbol: str) -> Decimal:
        return sum(
            (Decimal(lot.quantity_remaining) for lot in LotLedgerService.get_open_lots(db, account_id, symbol)),
            ZERO,
        )

    @staticmethod
    def get_lot_summary(
        db: Session, account_id: str, symbol: str, market_price: Decimal | None = None
    ) -> LotSummary:
        """FIFO view of a position.

        ``fifo_cost_basis`` prices the remaining shares at their own lots'
        costs, which differs from the weighted-average basis on Holding
        once lots have been partially sold.
        """
        lots = LotLedgerService.get_open_lots(db, account_id, symbol)
        lotted = sum((Decimal(lot.quantity_remaining) for lot in lots), ZERO)
        cost = sum(
            (Decimal(lot.quantity_remaining) * Decimal(lot.cost_per_share) for lot in lots), ZERO
        )
        realized = sum(
            (Decimal(d.realized_gain) for d in LotLedgerService.get_disposals(db, account_id, symbol)),
            ZERO,
        )

        summary = LotSummary(
            symbol=symbol,
            open_lot_count=len(lots),
            lotted_quantity=lotted,
            fifo_cost_basis=cost,
            average_cost=(cost / lotted) if lotted > ZERO else None,
            realized_gain=realized,
        )
        if market_price is not None:
            summary.market_price = market_price
            summary.market_value = lotted * market_price
            summary.unrealized_gain = summary.market_value - cost
        return summary


def _sell_result(
    symbol: str, quantity: Decimal, price: Decimal, plan: list[tuple[_OpenLot, Decimal]]
) -> SellResult:
    consumed = [
        LotConsumption(
            lot_id=lot.id,
            quantity=take,
            cost_per_share=Decimal(lot.cost_per_share),
            realized_gain=take * (price - Decimal(lot.cost_per_share)),
        )
        for lot, take in plan
    ]
    cost_basis = sum((c.quantity * c.cost_per_share for c in consumed), ZERO)
    proceeds = quantity * price
    return SellResult(
        symbol=symbol,
        quantity_sold=quantity,
        sale_price=price,
        cost_basis=cost_basis,
        proceeds=proceeds,
        realized_gain=proceeds - cost_basis,
        lots_touched=consumed,
    )
