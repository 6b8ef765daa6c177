"""Test fixtures and sample data."""
import pytest
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from integrations.market_data_protocol import PriceResult
from models import Account, PriceHistory, Transaction
from services.transaction_service import TransactionService


def add_transaction(
    db: Session,
    account: Account,
    tx_type: str,
    tx_date: date,
    today: date | None = None,
    **fields: Any,
) -> Transaction:
    """Append a transaction through normal ingestion.

    This is a helper function (not a fixture). Numeric keyword values may
    be given as strings; they go through the same schema as API input.

    Example:
        add_transaction(db, acc, "buy", date(2024, 1, 2), symbol="AAPL",
                        quantity="10", price_per_unit="5")
    """
    payload = {"type": tx_type, "transaction_date": tx_date, **fields}
    tx, _ = TransactionService.append(db, account, payload, today=today or date(2030, 1, 1))
    return tx


def buy(db: Session, account: Account, symbol: str, quantity, price, tx_date: date, **fields) -> Transaction:
    return add_transaction(
        db, account, "buy", tx_date, symbol=symbol, quantity=str(quantity), price_per_unit=str(price), **fields
    )


def sell(db: Session, account: Account, symbol: str, quantity, price, tx_date: date, **fields) -> Transaction:
    return add_transaction(
        db, account, "sell", tx_date, symbol=symbol, quantity=str(quantity), price_per_unit=str(price), **fields
    )


def add_price(
    db: Session,
    symbol: str,
    price_date: date,
    close,
    source: str = "yahoo",
    quality: float = 1.0,
) -> PriceHistory:
    """Insert a price row directly, bypassing rank checks."""
    row = PriceHistory(
        symbol=symbol,
        price_date=price_date,
        close_price=Decimal(str(close)),
        source=source,
        quality=quality,
    )
    db.add(row)
    db.flush()
    return row


def bar(symbol: str, price_date: date, close, source: str = "yahoo") -> PriceResult:
    return PriceResult(symbol=symbol, price_date=price_date, close_price=Decimal(str(close)), source=source)


@pytest.fixture
def account(db: Session) -> Account:
    """Create a test account with a zero balance."""
    acc = Account(
        user_id="user-1",
        name="Brokerage",
        account_type="brokerage",
        balance=Decimal("0"),
    )
    db.add(acc)
    db.commit()
    db.refresh(acc)
    return acc


@pytest.fixture
def second_account(db: Session) -> Account:
    """Create a second account for the same user."""
    acc = Account(
        user_id="user-1",
        name="Retirement",
        account_type="ira",
        balance=Decimal("0"),
    )
    db.add(acc)
    db.commit()
    db.refresh(acc)
    return acc
