"""Holdings reconstruction from the transaction log.

Holdings are a cache: quantity and weighted-average cost basis are
recomputed from every transaction of the account, then priced through a
fallback chain (stored price, live quote, cost basis).
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from integrations.exceptions import ProviderError
from integrations.market_data_protocol import PriceResult
from models import Holding, Transaction
from services.market_data_service import MarketDataService
from services.price_history_service import PriceHistoryService

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
EPSILON = Decimal("0.00001")

PRICE_SOURCE_STORE = "store"
PRICE_SOURCE_ORACLE = "oracle"
PRICE_SOURCE_COST_BASIS = "cost_basis"


@dataclass
class HoldingCalculation:
    symbol: str
    quantity: Decimal = ZERO
    cost_basis: Decimal = ZERO
    asset_type: Optional[str] = None

    @property
    def average_cost(self) -> Decimal:
        if self.quantity <= ZERO:
            return ZERO
        return self.cost_basis / self.quantity


@dataclass
class PriceResolution:
    symbol: str
    price: Decimal
    source: str  # "store" / "oracle" / "cost_basis"
    price_date: Optional[date] = None


@dataclass
class ReconstructionResult:
    account_id: str
    holdings: list[Holding] = field(default_factory=list)
    prices: dict[str, PriceResolution] = field(default_factory=dict)
    created: int = 0
    updated: int = 0
    deleted: int = 0

    @property
    def price_sources(self) -> dict[str, str]:
        return {symbol: p.source for symbol, p in self.prices.items()}


class HoldingsService:
    """Rebuilds an account's holdings cache."""

    def __init__(
        self,
        market_data: Optional[MarketDataService] = None,
        use_oracle: bool = True,
    ):
        self._market_data = market_data
        self.use_oracle = use_oracle

    @property
    def market_data(self) -> MarketDataService:
        if self._market_data is None:
            self._market_data = MarketDataService()
        return self._market_data

    @staticmethod
    def calculate_holdings(transactions: Iterable[Transaction]) -> dict[str, HoldingCalculation]:
        """Replay transactions into per-symbol quantity and cost basis.

        Pure; processes (transaction_date, sequence) order. Sells keep the
        average cost of the remaining shares. Positions at or below 1e-5
        shares are dropped.
        """
        calcs: dict[str, HoldingCalculation] = {}
        ordered = sorted(transactions, key=lambda t: (t.transaction_date, t.sequence))

        for tx in ordered:
            if not tx.symbol or tx.type not in ("buy", "sell", "split"):
                continue
            calc = calcs.setdefault(tx.symbol, HoldingCalculation(symbol=tx.symbol))
            if tx.asset_type and not calc.asset_type:
                calc.asset_type = tx.asset_type

            qty = Decimal(tx.quantity or 0)
            if tx.type == "buy":
                calc.quantity += qty
                calc.cost_basis += qty * Decimal(tx.price_per_unit or 0)
            elif tx.type == "sell":
                old_qty, old_cost = calc.quantity, calc.cost_basis
                calc.quantity = old_qty - qty
                if calc.quantity > ZERO:
                    calc.cost_basis = (old_cost / old_qty) * calc.quantity
                else:
                    calc.cost_basis = ZERO
            else:
                calc.quantity *= qty

        return {symbol: c for symbol, c in calcs.items() if c.quantity > EPSILON}

    def resolve_prices(
        self,
        db: Session,
        calculations: dict[str, HoldingCalculation],
        crypto_symbols: Optional[set[str]] = None,
    ) -> dict[str, PriceResolution]:
        """Price each position: stored price, then live quote, then cost basis.

        A live quote is written back to the price store as real data.
        """
        resolved: dict[str, PriceResolution] = {}
        for symbol, calc in calculations.items():
            latest = PriceHistoryService.get_latest(db, symbol)
            if latest is not None:
                resolved[symbol] = PriceResolution(
                    symbol, Decimal(latest.close_price), PRICE_SOURCE_STORE, latest.price_date
                )
                continue

            if self.use_oracle:
                try:
                    if crypto_symbols is None and calc.asset_type:
                        crypto = {symbol} if calc.asset_type.lower() in ("crypto", "cryptocurrency") else set()
                    else:
                        crypto = crypto_symbols
                    quote = self.market_data.get_quote(symbol, crypto)
                    PriceHistoryService.upsert_prices(
                        db,
                        [PriceResult(symbol, quote.quote_date, quote.last_price, quote.source, volume=quote.volume)],
                    )
                    resolved[symbol] = PriceResolution(
                        symbol, quote.last_price, PRICE_SOURCE_ORACLE, quote.quote_date
                    )
                    continue
                except ProviderError as e:
                    logger.warning("Live quote failed for %s, using cost basis: %s", symbol, e)

            resolved[symbol] = PriceResolution(symbol, calc.average_cost, PRICE_SOURCE_COST_BASIS)
        return resolved

    @staticmethod
    def get_holdings(db: Session, account_id: str) -> list[Holding]:
        return (
            db.query(Holding)
            .filter(Holding.account_id == account_id)
            .order_by(Holding.symbol.asc())
            .all()
        )

    @staticmethod
    def sync_holdings(
        db: Session,
        account_id: str,
        calculations: dict[str, HoldingCalculation],
        prices: dict[str, PriceResolution],
    ) -> ReconstructionResult:
        """Upsert changed holdings and delete ones no longer held."""
        result = ReconstructionResult(account_id=account_id, prices=dict(prices))
        existing = {h.symbol: h for h in HoldingsService.get_holdings(db, account_id)}

        for symbol, holding in existing.items():
            if symbol not in calculations:
                db.delete(holding)
                result.deleted += 1

        for symbol, calc in sorted(calculations.items()):
            price = prices.get(symbol)
            values = {
                "quantity": calc.quantity,
                "cost_basis": calc.cost_basis,
                "asset_type": calc.asset_type,
                "current_price": price.price if price else None,
                "current_value": calc.quantity * price.price if price else None,
                "price_source": price.source if price else None,
                "price_date": price.price_date if price else None,
            }
            holding = existing.get(symbol)
            if holding is None:
                holding = Holding(account_id=account_id, symbol=symbol, **values)
                db.add(holding)
                result.created += 1
            elif _changed(holding, values):
                for key, value in values.items():
                    setattr(holding, key, value)
                result.updated += 1
            result.holdings.append(holding)

        db.flush()
        return result

    def reconstruct(
        self,
        db: Session,
        account_id: str,
        transactions: Optional[list[Transaction]] = None,
    ) -> ReconstructionResult:
        """Recompute, price and persist all holdings of an account.

        Never modifies the transaction log.
        """
        if transactions is None:
            from services.transaction_service import TransactionService

            transactions = TransactionService.list_for_account(db, account_id)

        calculations = self.calculate_holdings(transactions)
        prices = self.resolve_prices(db, calculations)
        result = self.sync_holdings(db, account_id, calculations, prices)

        logger.info(
            "Reconstructed holdings for account %s: %d held, %d created, %d updated, %d deleted",
            account_id, len(result.holdings), result.created, result.updated, result.deleted,
        )
        return result


def _changed(holding: Holding, values: dict) -> bool:
    for key, value in values.items():
        current = getattr(holding, key)
        if isinstance(value, Decimal) and current is not None:
            if abs(Decimal(current) - value) > Decimal("0.000001"):
                return True
        elif current != value:
            return True
    return False
