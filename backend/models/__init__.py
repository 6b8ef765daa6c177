"""SQLAlchemy ORM models."""

from .account import Account
from .account_snapshot import AccountSnapshot
from .holding import Holding
from .holding_lot import HoldingLot
from .lot_disposal import LotDisposal
from .price_history import PriceHistory
from .sync_error import SyncError, SyncErrorType
from .transaction import Transaction
from .transaction_rollback import TransactionRollback
from .utils import derive_uuid, generate_uuid

__all__ = ["Account", "AccountSnapshot", "Holding", "HoldingLot", "LotDisposal", "PriceHistory", "SyncError", "SyncErrorType", "Transaction", "TransactionRollback", "derive_uuid", "generate_uuid"]
