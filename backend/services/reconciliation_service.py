"""Reconciliation between the transaction log and derived state.

Checks never modify anything. Suggestions may carry an ``auto_fix``
callable which runs only when a caller asks for it explicitly.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy.orm import Session

from models import Account, HoldingLot, Transaction, derive_uuid
from services.exceptions import InsufficientSharesError
from services.holdings_service import PRICE_SOURCE_COST_BASIS, HoldingsService
from services.lot_ledger_service import EPSILON, LotLedgerService
from services.transaction_service import TransactionService

logger = logging.getLogger(__name__)

BALANCE_TOLERANCE = Decimal("0.01")
HIGH_PERCENT = Decimal("10")
MEDIUM_PERCENT = Decimal("5")

SEVERITY_ORDER = {"high": 0, "medium": 1, "low": 2}


@dataclass
class ReconciliationCheck:
    account_id: str
    check_type: str
    expected: Decimal
    actual: Decimal
    difference: Decimal
    percent_difference: Optional[Decimal]
    passed: bool
    severity: str
    message: str


@dataclass
class Discrepancy:
    account_id: str
    symbol: str
    kind: str  # quantity_mismatch / missing_holding / orphaned_holding / lot_mismatch / oversold
    expected: Decimal
    actual: Decimal
    severity: str
    message: str

    @property
    def difference(self) -> Decimal:
        return abs(self.expected - self.actual)


@dataclass
class DuplicateGroup:
    account_id: str
    transaction_date: object
    amount: Decimal
    type: str
    transaction_ids: list[str]

    @property
    def key(self) -> str:
        return f"{self.account_id}-{self.transaction_date}-{self.amount}-{self.type}"


@dataclass
class Suggestion:
    id: str
    account_id: str
    kind: str
    severity: str
    title: str
    description: str
    auto_fix: Optional[Callable[[Session], str]] = field(default=None, repr=False)

    @property
    def can_auto_fix(self) -> bool:
        return self.auto_fix is not None


def balance_severity(difference: Decimal, actual: Decimal) -> tuple[str, Optional[Decimal]]:
    """Severity of a failed balance check and the percent it is based on.

    Percent is relative to the stored balance; a zero stored balance has
    no meaningful percent and is always high.
    """
    if actual == 0:
        return "high", None
    percent = difference / abs(actual) * 100
    if percent > HIGH_PERCENT:
        return "high", percent
    if percent >= MEDIUM_PERCENT:
        return "medium", percent
    return "low", percent


class ReconciliationService:
    """Compares stored balances, holdings and lots against the log."""

    def __init__(self, holdings_service: Optional[HoldingsService] = None):
        self._holdings_service = holdings_service

    @property
    def holdings_service(self) -> HoldingsService:
        if self._holdings_service is None:
            self._holdings_service = HoldingsService()
        return self._holdings_service

    @staticmethod
    def expected_balance(db: Session, account_id: str) -> Decimal:
        return sum(
            (Decimal(tx.amount) for tx in TransactionService.list_for_account(db, account_id)),
            Decimal("0"),
        )

    @staticmethod
    def check_balance(db: Session, account: Account) -> ReconciliationCheck:
        expected = ReconciliationService.expected_balance(db, account.id)
        actual = Decimal(account.balance or 0)
        difference = abs(expected - actual)
        passed = difference <= BALANCE_TOLERANCE

        if passed:
            severity = "low"
            percent = (difference / abs(actual) * 100) if actual else Decimal("0")
            message = "Balance matches transaction history"
        else:
            severity, percent = balance_severity(difference, actual)
            message = f"Stored balance {actual} differs from transaction total {expected} by {difference}"

        return ReconciliationCheck(
            account_id=account.id,
            check_type="balance",
            expected=expected,
            actual=actual,
            difference=difference,
            percent_difference=percent,
            passed=passed,
            severity=severity,
            message=message,
        )

    @staticmethod
    def check_holdings(db: Session, account: Account) -> list[Discrepancy]:
        """Stored holdings and open lots versus fresh replays of the log."""
        transactions = TransactionService.list_for_account(db, account.id)
        expected = HoldingsService.calculate_holdings(transactions)
        stored = {h.symbol: h for h in HoldingsService.get_holdings(db, account.id)}
        found: list[Discrepancy] = []

        for symbol, calc in expected.items():
            holding = stored.get(symbol)
            if holding is None:
                found.append(
                    Discrepancy(account.id, symbol, "missing_holding", calc.quantity, Decimal("0"), "high",
                                f"No holding stored for {symbol}, expected {calc.quantity}")
                )
            elif abs(Decimal(holding.quantity) - calc.quantity) > EPSILON:
                found.append(
                    Discrepancy(account.id, symbol, "quantity_mismatch", calc.quantity, Decimal(holding.quantity),
                                "high",
                                f"Holding quantity mismatch for {symbol}: expected {calc.quantity}, "
                                f"actual {holding.quantity}")
                )
        for symbol, holding in stored.items():
            if symbol not in expected:
                found.append(
                    Discrepancy(account.id, symbol, "orphaned_holding", Decimal("0"), Decimal(holding.quantity),
                                "high", f"Holding for {symbol} has no supporting transactions")
                )

        try:
            replay = LotLedgerService.replay(transactions)
        except InsufficientSharesError as e:
            found.append(
                Discrepancy(account.id, e.symbol, "oversold", e.requested, e.available, "high", str(e))
            )
            return found

        replayed = {lot.id: lot for lot in replay.lots}
        stored_lots = {
            lot.id: lot for lot in db.query(HoldingLot).filter(HoldingLot.account_id == account.id).all()
        }
        for lot_id, lot in replayed.items():
            row = stored_lots.get(lot_id)
            actual = Decimal(row.quantity_remaining) if row is not None else Decimal("0")
            if abs(actual - lot.quantity_remaining) > EPSILON:
                found.append(
                    Discrepancy(account.id, lot.symbol, "lot_mismatch", lot.quantity_remaining, actual, "medium",
                                f"Lot {lot_id} for {lot.symbol} has {actual} remaining, "
                                f"expected {lot.quantity_remaining}")
                )
        for lot_id, row in stored_lots.items():
            if lot_id not in replayed and Decimal(row.quantity_remaining) > EPSILON:
                found.append(
                    Discrepancy(account.id, row.symbol, "lot_mismatch", Decimal("0"),
                                Decimal(row.quantity_remaining), "medium",
                                f"Lot {lot_id} for {row.symbol} has no source transaction")
                )
        return found

    @staticmethod
    def find_duplicates(db: Session, account_ids: list[str]) -> list[DuplicateGroup]:
        """Groups of transactions sharing (account, date, amount, type)."""
        if not account_ids:
            return []
        rows = (
            db.query(Transaction)
            .filter(Transaction.account_id.in_(account_ids))
            .order_by(Transaction.transaction_date.asc(), Transaction.sequence.asc())
            .all()
        )
        groups: dict[tuple, list[Transaction]] = defaultdict(list)
        for tx in rows:
            groups[(tx.account_id, tx.transaction_date, Decimal(tx.amount), tx.type)].append(tx)

        return [
            DuplicateGroup(account_id, tx_date, amount, tx_type, [t.id for t in members])
            for (account_id, tx_date, amount, tx_type), members in groups.items()
            if len(members) > 1
        ]

    def suggest_fixes(self, db: Session, user_id: str) -> list[Suggestion]:
        """Actionable findings for all of a user's accounts, most severe first."""
        accounts = db.query(Account).filter(Account.user_id == user_id).order_by(Account.name).all()
        suggestions: list[Suggestion] = []

        for account in accounts:
            check = self.check_balance(db, account)
            if not check.passed:
                suggestions.append(
                    Suggestion(
                        id=derive_uuid("suggestion", "balance", account.id),
                        account_id=account.id,
                        kind="balance_mismatch",
                        severity=check.severity,
                        title=f"Balance mismatch in {account.name}",
                        description=check.message,
                        auto_fix=_balance_fix(account.id),
                    )
                )

            discrepancies = self.check_holdings(db, account)
            fixable = [d for d in discrepancies if d.kind != "oversold"]
            if fixable:
                symbols = sorted({d.symbol for d in fixable})
                suggestions.append(
                    Suggestion(
                        id=derive_uuid("suggestion", "holdings", account.id),
                        account_id=account.id,
                        kind="holdings_mismatch",
                        severity="high",
                        title=f"Holdings out of sync in {account.name}",
                        description=f"{len(fixable)} discrepancies for {', '.join(symbols)}",
                        auto_fix=self._holdings_fix(account.id),
                    )
                )
            for d in discrepancies:
                if d.kind == "oversold":
                    suggestions.append(
                        Suggestion(
                            id=derive_uuid("suggestion", "oversold", account.id, d.symbol),
                            account_id=account.id,
                            kind="oversold",
                            severity="high",
                            title=f"{d.symbol} sold more than held in {account.name}",
                            description=d.message,
                        )
                    )

            for h in HoldingsService.get_holdings(db, account.id):
                if h.price_source == PRICE_SOURCE_COST_BASIS:
                    suggestions.append(
                        Suggestion(
                            id=derive_uuid("suggestion", "missing_price", account.id, h.symbol),
                            account_id=account.id,
                            kind="missing_price",
                            severity="low",
                            title=f"No market price for {h.symbol}",
                            description=f"{h.symbol} in {account.name} is valued at cost basis",
                        )
                    )

        for group in self.find_duplicates(db, [a.id for a in accounts]):
            suggestions.append(
                Suggestion(
                    id=derive_uuid("suggestion", "duplicate", group.key),
                    account_id=group.account_id,
                    kind="duplicate_transactions",
                    severity="medium",
                    title="Possible duplicate transactions",
                    description=(
                        f"{len(group.transaction_ids)} {group.type} transactions of {group.amount} "
                        f"on {group.transaction_date}"
                    ),
                )
            )

        suggestions.sort(key=lambda s: SEVERITY_ORDER[s.severity])
        return suggestions

    @staticmethod
    def apply_fix(db: Session, suggestion: Suggestion) -> str:
        """Run a suggestion's auto-fix.

        Raises:
            ValueError: if the suggestion has no automatic fix.
        """
        if suggestion.auto_fix is None:
            raise ValueError(f"Suggestion {suggestion.kind} has no automatic fix")
        message = suggestion.auto_fix(db)
        logger.info("Applied fix %s for account %s: %s", suggestion.kind, suggestion.account_id, message)
        return message

    def _holdings_fix(self, account_id: str) -> Callable[[Session], str]:
        def fix(db: Session) -> str:
            transactions = TransactionService.list_for_account(db, account_id)
            LotLedgerService.rebuild_lots(db, account_id, transactions)
            result = self.holdings_service.reconstruct(db, account_id, transactions)
            return f"Rebuilt lots and {len(result.holdings)} holdings"

        return fix


def _balance_fix(account_id: str) -> Callable[[Session], str]:
    def fix(db: Session) -> str:
        account = db.get(Account, account_id)
        account.balance = ReconciliationService.expected_balance(db, account_id)
        db.flush()
        return f"Balance set to {account.balance}"

    return fix
