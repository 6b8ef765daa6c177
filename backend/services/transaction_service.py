"""Transaction ingestion: validation, sign normalisation and append."""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import ValidationError
from sqlalchemy import func
from sqlalchemy.orm import Session

from models import Account, Transaction
from schemas.transaction import (
    BuyTransaction,
    SellTransaction,
    SplitTransaction,
    TransactionCreate,
    parse_transaction,
)
from services.exceptions import TransactionNotFoundError, TransactionValidationError

logger = logging.getLogger(__name__)

AMOUNT_TOLERANCE = Decimal("0.01")
UNUSUAL_AMOUNT = Decimal("1000000000")
MAX_AGE_YEARS = 100

# Sign of the stored amount per kind: cash in is positive, cash out negative
_AMOUNT_SIGN = {
    "buy": -1,
    "withdrawal": -1,
    "fee": -1,
    "sell": 1,
    "dividend": 1,
    "interest": 1,
    "deposit": 1,
    "split": 0,
}


@dataclass
class ValidationReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    duplicate_ids: list[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors


def _years_ago(today: date, years: int) -> date:
    try:
        return today.replace(year=today.year - years)
    except ValueError:
        # Feb 29 on a non-leap target year
        return today.replace(year=today.year - years, day=28)


class TransactionService:
    """Validates and appends rows to an account's transaction log."""

    @staticmethod
    def coerce(payload: TransactionCreate | dict[str, Any]) -> TransactionCreate:
        """Parse a raw payload into its tagged variant.

        Raises:
            TransactionValidationError: if the payload does not match any variant.
        """
        if not isinstance(payload, dict):
            return payload
        try:
            return parse_transaction(payload)
        except ValidationError as e:
            errors = [
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            ]
            raise TransactionValidationError("Invalid transaction: " + "; ".join(errors), errors) from e

    @staticmethod
    def signed_amount(payload: TransactionCreate) -> Decimal:
        """Stored amount for ``payload`` with the sign its kind implies."""
        sign = _AMOUNT_SIGN[payload.type]
        if sign == 0:
            return Decimal("0")
        if isinstance(payload, (BuyTransaction, SellTransaction)):
            raw = payload.amount if payload.amount is not None else payload.quantity * payload.price_per_unit
        else:
            raw = payload.amount
        return abs(raw) * sign

    @staticmethod
    def row_values(payload: TransactionCreate) -> dict[str, Any]:
        """Column values for a Transaction row built from ``payload``."""
        values: dict[str, Any] = {
            "type": payload.type,
            "transaction_date": payload.transaction_date,
            "description": payload.description,
            "transaction_metadata": dict(payload.transaction_metadata) if payload.transaction_metadata else None,
            "amount": TransactionService.signed_amount(payload),
            "symbol": getattr(payload, "symbol", None),
            "asset_type": getattr(payload, "asset_type", None),
            "quantity": None,
            "price_per_unit": None,
        }
        if isinstance(payload, (BuyTransaction, SellTransaction)):
            values["quantity"] = payload.quantity
            values["price_per_unit"] = payload.price_per_unit
        elif isinstance(payload, SplitTransaction):
            values["quantity"] = payload.ratio
        return values

    @staticmethod
    def find_similar(
        db: Session, account_id: str, transaction_date: date, amount: Decimal, tx_type: str
    ) -> list[Transaction]:
        """Existing rows sharing (account, date, amount, type)."""
        rows = (
            db.query(Transaction)
            .filter(
                Transaction.account_id == account_id,
                Transaction.transaction_date == transaction_date,
                Transaction.type == tx_type,
            )
            .all()
        )
        return [r for r in rows if Decimal(r.amount) == amount]

    @staticmethod
    def validate(
        db: Session,
        account_id: str,
        payload: TransactionCreate,
        today: date | None = None,
    ) -> ValidationReport:
        """Business-rule checks beyond the schema.

        Errors (an amount that disagrees with quantity * price, a date more
        than a century old) block persistence; warnings are returned to the
        caller.
        """
        today = today or date.today()
        report = ValidationReport()

        if payload.transaction_date > today:
            report.warnings.append("Transaction date is in the future")
        if payload.transaction_date < _years_ago(today, MAX_AGE_YEARS):
            report.errors.append("Transaction date is too far in the past")

        amount = TransactionService.signed_amount(payload)
        if abs(amount) > UNUSUAL_AMOUNT:
            report.warnings.append("Unusually large amount detected")

        if isinstance(payload, (BuyTransaction, SellTransaction)) and payload.amount is not None:
            calculated = payload.quantity * payload.price_per_unit
            if abs(calculated - abs(payload.amount)) > AMOUNT_TOLERANCE:
                report.errors.append(
                    f"Amount mismatch: {calculated:.2f} expected vs {abs(payload.amount):.2f} provided"
                )

        if payload.type != "split":
            similar = TransactionService.find_similar(
                db, account_id, payload.transaction_date, amount, payload.type
            )
            if similar:
                report.duplicate_ids = [r.id for r in similar]
                report.warnings.append(
                    f"Potential duplicate: {len(similar)} similar transaction(s) found"
                )

        return report

    @staticmethod
    def next_sequence(db: Session, account_id: str) -> int:
        current = (
            db.query(func.max(Transaction.sequence))
            .filter(Transaction.account_id == account_id)
            .scalar()
        )
        return (current or 0) + 1

    @staticmethod
    def append(
        db: Session,
        account: Account,
        payload: TransactionCreate | dict[str, Any],
        today: date | None = None,
    ) -> tuple[Transaction, ValidationReport]:
        """Validate ``payload`` and append it to ``account``'s log.

        The account's stored balance moves by the signed amount.

        Raises:
            TransactionValidationError: on schema or business-rule errors;
                nothing is written in that case.
        """
        payload = TransactionService.coerce(payload)
        report = TransactionService.validate(db, account.id, payload, today=today)
        if not report.valid:
            raise TransactionValidationError("; ".join(report.errors), report.errors)

        tx = Transaction(
            account_id=account.id,
            sequence=TransactionService.next_sequence(db, account.id),
            **TransactionService.row_values(payload),
        )
        db.add(tx)
        account.balance = Decimal(account.balance or 0) + tx.amount
        db.flush()

        logger.info(
            "Appended %s %s (seq %d) to account %s",
            tx.type, tx.symbol or "cash", tx.sequence, account.id,
        )
        return tx, report

    @staticmethod
    def list_for_account(db: Session, account_id: str) -> list[Transaction]:
        """The account's log in replay order (date, then insertion sequence)."""
        return (
            db.query(Transaction)
            .filter(Transaction.account_id == account_id)
            .order_by(Transaction.transaction_date.asc(), Transaction.sequence.asc())
            .all()
        )

    @staticmethod
    def get(db: Session, transaction_id: str) -> Transaction:
        tx = db.get(Transaction, transaction_id)
        if tx is None:
            raise TransactionNotFoundError(transaction_id)
        return tx

    @staticmethod
    def annotate(db: Session, tx: Transaction, **values: Any) -> None:
        """Merge ``values`` into the row's metadata (the only mutable column)."""
        merged = dict(tx.transaction_metadata or {})
        merged.update(values)
        tx.transaction_metadata = merged
        db.flush()

    @staticmethod
    def snapshot(tx: Transaction) -> dict[str, Any]:
        """JSON-safe copy of a row, used for rollback audit and undo."""
        return {
            "id": tx.id,
            "account_id": tx.account_id,
            "sequence": tx.sequence,
            "type": tx.type,
            "symbol": tx.symbol,
            "quantity": str(tx.quantity) if tx.quantity is not None else None,
            "price_per_unit": str(tx.price_per_unit) if tx.price_per_unit is not None else None,
            "amount": str(tx.amount),
            "transaction_date": tx.transaction_date.isoformat(),
            "asset_type": tx.asset_type,
            "description": tx.description,
            "transaction_metadata": tx.transaction_metadata,
        }

    @staticmethod
    def from_snapshot(snapshot: dict[str, Any]) -> Transaction:
        """Unsaved Transaction rebuilt from ``snapshot``."""
        return Transaction(
            id=snapshot["id"],
            account_id=snapshot["account_id"],
            sequence=snapshot["sequence"],
            type=snapshot["type"],
            symbol=snapshot["symbol"],
            quantity=Decimal(snapshot["quantity"]) if snapshot["quantity"] is not None else None,
            price_per_unit=(
                Decimal(snapshot["price_per_unit"]) if snapshot["price_per_unit"] is not None else None
            ),
            amount=Decimal(snapshot["amount"]),
            transaction_date=date.fromisoformat(snapshot["transaction_date"]),
            asset_type=snapshot["asset_type"],
            description=snapshot["description"],
            transaction_metadata=snapshot["transaction_metadata"],
        )

    @staticmethod
    def restore(db: Session, account: Account, snapshot: dict[str, Any]) -> Transaction:
        """Re-insert a previously removed row from its snapshot.

        Keeps the original id so derived lot ids match again. The original
        sequence is reused unless another row has taken it since.
        """
        tx = TransactionService.from_snapshot(snapshot)
        taken = (
            db.query(Transaction.id)
            .filter(Transaction.account_id == account.id, Transaction.sequence == tx.sequence)
            .first()
        )
        if taken is not None:
            tx.sequence = TransactionService.next_sequence(db, account.id)
        db.add(tx)
        account.balance = Decimal(account.balance or 0) + tx.amount
        db.flush()
        return tx
