"""Sync error audit log, recovery and transaction rollback."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from integrations.market_data_protocol import PriceResult
from models import Account, SyncError, SyncErrorType, TransactionRollback
from services.account_locks import AccountLockRegistry, get_account_locks
from services.exceptions import AccountNotFoundError, DataIntegrityError
from services.holdings_service import HoldingsService
from services.lot_ledger_service import EPSILON, LotLedgerService
from services.price_history_service import PriceHistoryService
from services.reconciliation_service import ReconciliationService
from services.retry import RetryPolicy, with_retry
from services.snapshot_service import SnapshotService
from services.transaction_service import TransactionService

logger = logging.getLogger(__name__)


@dataclass
class RecoveryResult:
    success: bool
    message: str
    attempts: int = 0


@dataclass
class RollbackResult:
    transaction_id: str
    account_id: str
    reversed_amount: Decimal
    snapshot: dict[str, Any]


class SyncErrorService:
    """Records failures after a transaction was accepted and repairs them.

    Recovery actions replay the transaction log (holdings, lots, data
    integrity), regenerate snapshots, recompute the stored balance or
    refetch a quote. Each action runs under the account lock and through
    the retry policy.
    """

    def __init__(
        self,
        holdings_service: Optional[HoldingsService] = None,
        retry_policy: Optional[RetryPolicy] = None,
        locks: Optional[AccountLockRegistry] = None,
    ):
        self._holdings_service = holdings_service
        self.retry_policy = retry_policy or RetryPolicy()
        self.locks = locks or get_account_locks()

    @property
    def holdings_service(self) -> HoldingsService:
        if self._holdings_service is None:
            self._holdings_service = HoldingsService()
        return self._holdings_service

    # --- Audit log ---

    @staticmethod
    def record(
        db: Session,
        error_type: SyncErrorType | str,
        message: str,
        context: Optional[dict[str, Any]] = None,
        account_id: Optional[str] = None,
        commit: bool = False,
    ) -> SyncError:
        """Append an error to the audit log.

        With ``commit=True`` the row is committed immediately so it
        survives a rollback of the operation that failed.
        """
        error = SyncError(
            error_type=SyncErrorType(error_type).value,
            message=message,
            context=context or {},
            account_id=account_id,
            resolved=False,
        )
        db.add(error)
        if commit:
            db.commit()
        else:
            db.flush()
        logger.warning("Recorded %s for account %s: %s", error.error_type, account_id, message)
        return error

    @staticmethod
    def get_unresolved(db: Session, account_id: Optional[str] = None) -> list[SyncError]:
        query = db.query(SyncError).filter(SyncError.resolved.is_(False))
        if account_id is not None:
            query = query.filter(SyncError.account_id == account_id)
        return query.order_by(SyncError.created_at.desc()).all()

    @staticmethod
    def list_errors(db: Session, include_resolved: bool = False) -> list[SyncError]:
        query = db.query(SyncError)
        if not include_resolved:
            query = query.filter(SyncError.resolved.is_(False))
        return query.order_by(SyncError.created_at.desc()).all()

    @staticmethod
    def mark_resolved(db: Session, error: SyncError, resolution: str) -> SyncError:
        error.resolved = True
        error.resolution = resolution
        error.resolved_at = datetime.now(timezone.utc)
        db.flush()
        return error

    @staticmethod
    def clear_old_errors(db: Session, days: int = 30) -> int:
        """Delete resolved errors older than ``days``; returns the count."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        old = (
            db.query(SyncError)
            .filter(SyncError.resolved.is_(True), SyncError.created_at < cutoff.replace(tzinfo=None))
            .all()
        )
        for error in old:
            db.delete(error)
        db.flush()
        if old:
            logger.info("Cleared %d resolved sync errors older than %d days", len(old), days)
        return len(old)

    # --- Recovery ---

    def rebuild_account(self, db: Session, account_id: str) -> str:
        """Replay lots and holdings, then verify they agree."""
        with self.locks.hold(account_id):
            transactions = TransactionService.list_for_account(db, account_id)
            LotLedgerService.rebuild_lots(db, account_id, transactions)
            result = self.holdings_service.reconstruct(db, account_id, transactions)
            verify_consistency(db, account_id)
        return f"Rebuilt {len(result.holdings)} holdings from {len(transactions)} transactions"

    def _recompute_balance(self, db: Session, account_id: str) -> str:
        with self.locks.hold(account_id):
            account = db.get(Account, account_id)
            if account is None:
                raise AccountNotFoundError(account_id)
            account.balance = ReconciliationService.expected_balance(db, account_id)
            db.flush()
        return f"Balance recomputed as {account.balance}"

    def _regenerate_snapshots(self, db: Session, account_id: str, context: dict[str, Any]) -> str:
        snapshot_date = date.fromisoformat(context.get("snapshot_date") or date.today().isoformat())
        since = date.fromisoformat(context.get("since") or snapshot_date.isoformat())
        with self.locks.hold(account_id):
            rows = SnapshotService.refresh_snapshots(db, account_id, since, snapshot_date)
        return f"Regenerated {len(rows)} snapshot(s) from {since}"

    def _refetch_quote(self, db: Session, symbol: str) -> str:
        holdings = self.holdings_service
        quote = holdings.market_data.get_quote(symbol)
        PriceHistoryService.upsert_prices(
            db, [PriceResult(quote.symbol, quote.quote_date, quote.last_price, quote.source)]
        )
        return f"Refetched {quote.symbol} at {quote.last_price}"

    def _recovery_action(self, db: Session, error: SyncError) -> Optional[Callable[[], str]]:
        context = error.context or {}
        account_id = error.account_id or context.get("account_id")
        kind = error.error_type

        if kind in (
            SyncErrorType.HOLDINGS_RECALCULATION_FAILED.value,
            SyncErrorType.LOT_TRACKING_FAILED.value,
            SyncErrorType.DATA_INTEGRITY_VIOLATION.value,
        ) and account_id:
            return lambda: self.rebuild_account(db, account_id)
        if kind == SyncErrorType.SNAPSHOT_CREATION_FAILED.value and account_id:
            return lambda: self._regenerate_snapshots(db, account_id, context)
        if kind == SyncErrorType.BALANCE_UPDATE_FAILED.value and account_id:
            return lambda: self._recompute_balance(db, account_id)
        if kind == SyncErrorType.PRICE_UPDATE_FAILED.value and context.get("symbol"):
            return lambda: self._refetch_quote(db, context["symbol"])
        return None

    def recover(self, db: Session, error: SyncError) -> RecoveryResult:
        """Attempt automatic recovery for one recorded error."""
        if error.resolved:
            return RecoveryResult(True, f"Already resolved: {error.resolution}")
        if error.error_type == SyncErrorType.INSUFFICIENT_SHARES.value:
            return RecoveryResult(False, "Insufficient shares cannot be recovered automatically")

        action = self._recovery_action(db, error)
        if action is None:
            return RecoveryResult(False, "No automatic recovery available")

        outcome = with_retry(
            action, self.retry_policy, description=f"recovery of {error.error_type}", session=db
        )
        if not outcome.success:
            return RecoveryResult(False, f"Recovery failed: {outcome.error}", outcome.attempts)

        self.mark_resolved(db, error, outcome.result)
        logger.info("Recovered %s (%s): %s", error.id, error.error_type, outcome.result)
        return RecoveryResult(True, outcome.result, outcome.attempts)

    def recover_all(self, db: Session, account_id: Optional[str] = None) -> dict[str, RecoveryResult]:
        return {e.id: self.recover(db, e) for e in self.get_unresolved(db, account_id)}

    # --- Rollback ---

    def rollback_transaction(
        self, db: Session, transaction_id: str, reason: Optional[str] = None
    ) -> RollbackResult:
        """Remove an erroneous transaction and rebuild what depended on it.

        Raises:
            InsufficientSharesError: if a later sell would oversell without
                this transaction; nothing is changed in that case.
        """
        tx = TransactionService.get(db, transaction_id)
        account_id = tx.account_id

        with self.locks.hold(account_id):
            remaining = [t for t in TransactionService.list_for_account(db, account_id) if t.id != tx.id]
            # Dry run before anything is deleted
            LotLedgerService.replay(remaining)

            snapshot = TransactionService.snapshot(tx)
            account = db.get(Account, account_id)
            amount = Decimal(tx.amount)
            db.delete(tx)
            account.balance = Decimal(account.balance or 0) - amount
            db.add(
                TransactionRollback(
                    transaction_id=transaction_id,
                    account_id=account_id,
                    reason=reason,
                    snapshot=snapshot,
                )
            )
            db.flush()

            LotLedgerService.rebuild_lots(db, account_id, remaining)
            self.holdings_service.reconstruct(db, account_id, remaining)

        logger.info("Rolled back transaction %s in account %s: %s", transaction_id, account_id, reason)
        return RollbackResult(transaction_id, account_id, amount, snapshot)


def verify_consistency(db: Session, account_id: str) -> None:
    """Holding quantity must equal open lot quantity for every symbol.

    Raises:
        DataIntegrityError: listing every symbol that disagrees.
    """
    lots: dict[str, Decimal] = {}
    for lot in LotLedgerService.get_open_lots(db, account_id):
        lots[lot.symbol] = lots.get(lot.symbol, Decimal("0")) + Decimal(lot.quantity_remaining)
    holdings = {h.symbol: Decimal(h.quantity) for h in HoldingsService.get_holdings(db, account_id)}

    mismatched = []
    for symbol in sorted(set(lots) | set(holdings)):
        held = holdings.get(symbol, Decimal("0"))
        lotted = lots.get(symbol, Decimal("0"))
        if abs(held - lotted) > EPSILON:
            mismatched.append(f"{symbol}: holding {held} vs lots {lotted}")
    if mismatched:
        raise DataIntegrityError("Holdings disagree with lots: " + "; ".join(mismatched))

