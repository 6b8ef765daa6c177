"""Typed exception hierarchy for ledger operations.

Mirrors the provider hierarchy in ``integrations.exceptions``: callers
branch on the class, and ``retriable`` tells the retry policy whether
another attempt could succeed.
"""

from decimal import Decimal


class LedgerError(Exception):
    """Base exception for ledger engine failures."""

    retriable = False


class TransactionValidationError(LedgerError):
    """A transaction failed ingestion checks and was not persisted."""

    def __init__(self, message: str, errors: list[str] | None = None):
        self.errors = errors or [message]
        super().__init__(message)


class InsufficientSharesError(LedgerError):
    """Open lots cannot cover a requested sell."""

    def __init__(self, symbol: str, requested: Decimal, available: Decimal):
        self.symbol = symbol
        self.requested = requested
        self.available = available
        self.missing = requested - available
        super().__init__(
            f"Insufficient shares to sell {symbol}. Missing {self.missing} shares"
        )


class DataIntegrityError(LedgerError):
    """Derived state disagrees with the transaction log after a rebuild."""

    retriable = True


class AccountNotFoundError(LedgerError):
    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account {account_id} not found")


class TransactionNotFoundError(LedgerError):
    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} not found")
