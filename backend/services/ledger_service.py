"""Caller-facing ledger operations.

Ties ingestion, lots, holdings, prices, reconciliation and error
recovery together. Writes to one account run under that account's lock.
Failures of derived state after a transaction is accepted are retried,
then recorded as sync errors instead of undoing the accepted row.
"""

import logging
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Callable, Iterator, Optional, TypeVar

from sqlalchemy.orm import Session

from config import settings
from models import Account, AccountSnapshot, SyncError, SyncErrorType, Transaction, generate_uuid
from models.transaction import SECURITY_TYPES
from schemas.transaction import SellTransaction, TransactionCreate
from services.account_locks import AccountLockRegistry, get_account_locks
from services.account_service import AccountService
from services.exceptions import DataIntegrityError, InsufficientSharesError, LedgerError
from services.holdings_service import HoldingsService, ReconstructionResult
from services.lot_ledger_service import LotLedgerService, SellResult
from services.market_data_service import MarketDataService
from services.price_history_service import BackfillReport, PriceHistoryService
from services.rate_limit import CancellationToken, SlidingWindowRateLimiter
from services.reconciliation_service import (
    Discrepancy,
    DuplicateGroup,
    ReconciliationCheck,
    ReconciliationService,
    Suggestion,
)
from services.retry import RetryPolicy, with_retry
from services.snapshot_service import SnapshotService
from services.sync_error_service import (
    RecoveryResult,
    RollbackResult,
    SyncErrorService,
    verify_consistency,
)
from services.transaction_service import TransactionService
from services.undo_history import UndoAction, UndoHistory
from utils.ticker import CRYPTO_ASSET_TYPES, normalize_symbol

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RecordResult:
    transaction: Transaction
    warnings: list[str] = field(default_factory=list)
    sell: Optional[SellResult] = None
    reconstruction: Optional[ReconstructionResult] = None
    sync_error: Optional[SyncError] = None


@dataclass
class HoldingView:
    """A holding with both cost-basis views side by side.

    ``cost_basis`` is the weighted-average basis kept on the holding;
    ``fifo_cost_basis`` is what the remaining lots actually cost.
    """

    symbol: str
    quantity: Decimal
    cost_basis: Decimal
    average_cost: Decimal
    fifo_cost_basis: Decimal
    realized_gain: Decimal
    current_price: Optional[Decimal]
    current_value: Optional[Decimal]
    unrealized_gain: Optional[Decimal]
    price_source: Optional[str]
    price_date: Optional[date]
    asset_type: Optional[str] = None


@dataclass
class ReconciliationReport:
    checks: list[ReconciliationCheck] = field(default_factory=list)
    discrepancies: list[Discrepancy] = field(default_factory=list)
    duplicates: list[DuplicateGroup] = field(default_factory=list)
    suggestions: list[Suggestion] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return all(c.passed for c in self.checks) and not self.discrepancies and not self.duplicates


class LedgerService:
    """Entry point used by the API, startup sweeps and scripts."""

    def __init__(
        self,
        market_data: Optional[MarketDataService] = None,
        locks: Optional[AccountLockRegistry] = None,
        retry_policy: Optional[RetryPolicy] = None,
        rate_limiter: Optional[SlidingWindowRateLimiter] = None,
        undo_history: Optional[UndoHistory] = None,
        use_oracle: bool = True,
        snapshot_on_write: Optional[bool] = None,
    ):
        self.market_data = market_data or MarketDataService()
        self.locks = locks or get_account_locks()
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=settings.SYNC_RETRY_MAX_ATTEMPTS,
            base_delay=settings.SYNC_RETRY_BASE_DELAY_SECONDS,
        )
        self.rate_limiter = rate_limiter
        self.history = undo_history if undo_history is not None else UndoHistory()
        self.holdings = HoldingsService(self.market_data, use_oracle=use_oracle)
        self.prices = PriceHistoryService(self.market_data)
        self.reconciliation = ReconciliationService(self.holdings)
        self.sync_errors = SyncErrorService(self.holdings, self.retry_policy, self.locks)
        self.snapshot_on_write = settings.SNAPSHOT_ON_WRITE if snapshot_on_write is None else snapshot_on_write

    @contextmanager
    def account_write(self, db: Session, account_id: Optional[str]) -> Iterator[None]:
        """Hold the account's lock until the block's changes are committed.

        Commits when the block exits normally. On an exception nothing is
        committed and the lock is released. Without an account id the
        block only commits.
        """
        with self.locks.hold(account_id) if account_id else nullcontext():
            yield
            db.commit()

    # --- Internals ---

    def _retry_or_record(
        self,
        db: Session,
        operation: Callable[[], T],
        error_type: SyncErrorType,
        account_id: str,
        context: Optional[dict[str, Any]] = None,
    ) -> tuple[Optional[T], Optional[SyncError]]:
        outcome = with_retry(operation, self.retry_policy, description=error_type.value.lower(), session=db)
        if outcome.success:
            return outcome.result, None
        if isinstance(outcome.error, DataIntegrityError):
            error_type = SyncErrorType.DATA_INTEGRITY_VIOLATION
        error = SyncErrorService.record(
            db, error_type, str(outcome.error), context={"account_id": account_id, **(context or {})},
            account_id=account_id,
        )
        return None, error

    def _rebuild(self, db: Session, account_id: str) -> ReconstructionResult:
        transactions = TransactionService.list_for_account(db, account_id)
        LotLedgerService.rebuild_lots(db, account_id, transactions)
        result = self.holdings.reconstruct(db, account_id, transactions)
        verify_consistency(db, account_id)
        return result

    def _refresh_holdings(self, db: Session, account_id: str) -> ReconstructionResult:
        result = self.holdings.reconstruct(db, account_id)
        verify_consistency(db, account_id)
        return result

    def _refresh_snapshots(
        self, db: Session, account_id: str, since: date, today: Optional[date] = None
    ) -> Optional[SyncError]:
        """Regenerate snapshots the write made stale; failures are recorded, not raised."""
        if not self.snapshot_on_write:
            return None
        snapshot_date = today or date.today()
        _, error = self._retry_or_record(
            db,
            lambda: SnapshotService.refresh_snapshots(db, account_id, since, snapshot_date),
            SyncErrorType.SNAPSHOT_CREATION_FAILED,
            account_id,
            {"since": since.isoformat(), "snapshot_date": snapshot_date.isoformat()},
        )
        return error

    @staticmethod
    def _check_replay(db: Session, account_id: str, provisional: Transaction) -> None:
        """Replay the log with ``provisional`` added; raises before any write."""
        existing = TransactionService.list_for_account(db, account_id)
        LotLedgerService.replay([*existing, provisional])

    @staticmethod
    def _provisional(db: Session, account: Account, payload: TransactionCreate) -> Transaction:
        return Transaction(
            id=generate_uuid(),
            account_id=account.id,
            sequence=TransactionService.next_sequence(db, account.id),
            **TransactionService.row_values(payload),
        )

    def _reject_oversell(self, db: Session, account_id: str, error: InsufficientSharesError, context: dict) -> None:
        SyncErrorService.record(
            db,
            SyncErrorType.INSUFFICIENT_SHARES,
            str(error),
            context={
                "account_id": account_id,
                "symbol": error.symbol,
                "requested": str(error.requested),
                "available": str(error.available),
                **context,
            },
            account_id=account_id,
            commit=True,
        )

    # --- Transactions ---

    def record_transaction(
        self,
        db: Session,
        account_id: str,
        payload: TransactionCreate | dict[str, Any],
        today: Optional[date] = None,
    ) -> RecordResult:
        """Validate and append a transaction, then rebuild what it affects.

        Sells are routed through :meth:`sell_shares` so they are checked
        against open lots first.

        Raises:
            TransactionValidationError: invalid payload; nothing written.
            InsufficientSharesError: the transaction would oversell.
        """
        payload = TransactionService.coerce(payload)
        if isinstance(payload, SellTransaction):
            return self._sell(db, account_id, payload, today)

        with self.locks.hold(account_id):
            account = AccountService.get_account(db, account_id)
            if payload.type in SECURITY_TYPES:
                try:
                    self._check_replay(db, account_id, self._provisional(db, account, payload))
                except InsufficientSharesError as e:
                    self._reject_oversell(db, account_id, e, {"type": payload.type})
                    raise

            tx, report = TransactionService.append(db, account, payload, today=today)
            result = RecordResult(transaction=tx, warnings=list(report.warnings))

            if report.duplicate_ids:
                SyncErrorService.record(
                    db,
                    SyncErrorType.DUPLICATE_TRANSACTION,
                    f"Transaction {tx.id} matches {len(report.duplicate_ids)} existing transaction(s)",
                    context={"transaction_id": tx.id, "duplicates": report.duplicate_ids},
                    account_id=account_id,
                )

            if tx.type in SECURITY_TYPES:
                result.reconstruction, result.sync_error = self._retry_or_record(
                    db,
                    lambda: self._rebuild(db, account_id),
                    SyncErrorType.HOLDINGS_RECALCULATION_FAILED,
                    account_id,
                    {"transaction_id": tx.id},
                )

            snapshot_error = self._refresh_snapshots(db, account_id, tx.transaction_date, today)
            if snapshot_error is not None:
                result.warnings.append(f"Snapshot deferred: {snapshot_error.message}")

            self.history.record("create", TransactionService.snapshot(tx))
        return result

    def sell_shares(
        self,
        db: Session,
        account_id: str,
        symbol: str,
        quantity: Decimal,
        price: Decimal,
        sale_date: date,
        description: Optional[str] = None,
        today: Optional[date] = None,
    ) -> RecordResult:
        """Sell ``quantity`` shares FIFO and record the realized gain.

        Raises:
            InsufficientSharesError: open lots cannot cover the sale; no
                transaction or lot is written and the failure is logged.
        """
        payload = SellTransaction(
            symbol=symbol,
            quantity=quantity,
            price_per_unit=price,
            transaction_date=sale_date,
            description=description,
        )
        return self._sell(db, account_id, payload, today)

    def _sell(
        self, db: Session, account_id: str, payload: SellTransaction, today: Optional[date]
    ) -> RecordResult:
        symbol = payload.symbol
        with self.locks.hold(account_id):
            account = AccountService.get_account(db, account_id)
            existing = TransactionService.list_for_account(db, account_id)
            backdated = any(
                t.symbol == symbol and t.transaction_date > payload.transaction_date for t in existing
            )
            try:
                LotLedgerService.replay([*existing, self._provisional(db, account, payload)])
            except InsufficientSharesError as e:
                self._reject_oversell(db, account_id, e, {"sale_date": payload.transaction_date.isoformat()})
                raise

            tx, report = TransactionService.append(db, account, payload, today=today)
            result = RecordResult(transaction=tx, warnings=list(report.warnings))

            sell: Optional[SellResult] = None
            if not backdated:
                try:
                    sell = LotLedgerService.apply_sell(
                        db, account_id, symbol, payload.quantity, payload.price_per_unit,
                        payload.transaction_date, transaction_id=tx.id,
                    )
                except InsufficientSharesError:
                    # Stored lots drifted from the log; the replay above is authoritative
                    logger.warning("Stored lots for %s in %s are stale, rebuilding", symbol, account_id)
            if sell is None:
                sell = LotLedgerService.rebuild_lots(db, account_id).sells[tx.id]
            result.sell = sell

            TransactionService.annotate(
                db,
                tx,
                realized_gain=str(sell.realized_gain),
                cost_basis=str(sell.cost_basis),
                lots=[{"lot_id": c.lot_id, "quantity": str(c.quantity)} for c in sell.lots_touched],
            )

            result.reconstruction, result.sync_error = self._retry_or_record(
                db,
                lambda: self._refresh_holdings(db, account_id),
                SyncErrorType.HOLDINGS_RECALCULATION_FAILED,
                account_id,
                {"transaction_id": tx.id},
            )
            snapshot_error = self._refresh_snapshots(db, account_id, tx.transaction_date, today)
            if snapshot_error is not None:
                result.warnings.append(f"Snapshot deferred: {snapshot_error.message}")
            self.history.record("create", TransactionService.snapshot(tx))
        return result

    def rollback_transaction(
        self, db: Session, transaction_id: str, reason: Optional[str] = None
    ) -> RollbackResult:
        """Remove a transaction, reverse its balance effect and rebuild.

        Raises:
            TransactionNotFoundError: unknown id.
            InsufficientSharesError: removal would make a later sell oversell.
        """
        tx = TransactionService.get(db, transaction_id)
        account_id = tx.account_id
        since = tx.transaction_date
        with self.locks.hold(account_id):
            try:
                result = self.sync_errors.rollback_transaction(db, transaction_id, reason)
            except InsufficientSharesError as e:
                self._reject_oversell(db, account_id, e, {"rollback_of": transaction_id})
                raise
            self._refresh_snapshots(db, account_id, since)
        self.history.record("rollback", result.snapshot)
        return result

    def list_transactions(self, db: Session, account_id: str) -> list[Transaction]:
        AccountService.get_account(db, account_id)
        return TransactionService.list_for_account(db, account_id)

    # --- Derived state ---

    def reconstruct_account(self, db: Session, account_id: str) -> ReconstructionResult:
        """Rebuild lots and holdings from the full log.

        Idempotent: running it twice on an unchanged log writes identical rows.

        Raises:
            LedgerError: when reconstruction keeps failing; the failure is
                recorded (and committed) as a sync error first.
        """
        AccountService.get_account(db, account_id)
        with self.locks.hold(account_id):
            outcome = with_retry(
                lambda: self._rebuild(db, account_id), self.retry_policy, "reconstruction", session=db
            )
            if outcome.success:
                return outcome.result

            error = outcome.error
            if isinstance(error, DataIntegrityError):
                error_type = SyncErrorType.DATA_INTEGRITY_VIOLATION
            elif isinstance(error, InsufficientSharesError):
                error_type = SyncErrorType.LOT_TRACKING_FAILED
            else:
                error_type = SyncErrorType.HOLDINGS_RECALCULATION_FAILED
            SyncErrorService.record(
                db, error_type, str(error), context={"account_id": account_id}, account_id=account_id, commit=True
            )
            if isinstance(error, LedgerError):
                raise error
            raise DataIntegrityError(f"Reconstruction of account {account_id} failed: {error}") from error

    def get_holdings(self, db: Session, account_id: str) -> list[HoldingView]:
        AccountService.get_account(db, account_id)
        views = []
        for h in HoldingsService.get_holdings(db, account_id):
            quantity = Decimal(h.quantity)
            cost_basis = Decimal(h.cost_basis)
            price = Decimal(h.current_price) if h.current_price is not None else None
            summary = LotLedgerService.get_lot_summary(db, account_id, h.symbol, market_price=price)
            views.append(
                HoldingView(
                    symbol=h.symbol,
                    quantity=quantity,
                    cost_basis=cost_basis,
                    average_cost=cost_basis / quantity if quantity else Decimal("0"),
                    fifo_cost_basis=summary.fifo_cost_basis,
                    realized_gain=summary.realized_gain,
                    current_price=price,
                    current_value=Decimal(h.current_value) if h.current_value is not None else None,
                    unrealized_gain=(price * quantity - cost_basis) if price is not None else None,
                    price_source=h.price_source,
                    price_date=h.price_date,
                    asset_type=h.asset_type,
                )
            )
        return views

    # --- Snapshots ---

    def snapshot_account(self, db: Session, account_id: str, snapshot_date: Optional[date] = None) -> AccountSnapshot:
        """Generate (or regenerate) one day's snapshot.

        Raises:
            LedgerError: generation kept failing; recorded (and committed)
                as SNAPSHOT_CREATION_FAILED first.
        """
        AccountService.get_account(db, account_id)
        snapshot_date = snapshot_date or date.today()
        with self.locks.hold(account_id):
            row, error = self._retry_or_record(
                db,
                lambda: SnapshotService.generate_snapshot(db, account_id, snapshot_date),
                SyncErrorType.SNAPSHOT_CREATION_FAILED,
                account_id,
                {"since": snapshot_date.isoformat(), "snapshot_date": snapshot_date.isoformat()},
            )
            if error is not None:
                db.commit()
                raise LedgerError(f"Snapshot for {snapshot_date} failed: {error.message}")
        return row

    def get_snapshots(
        self,
        db: Session,
        account_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[AccountSnapshot]:
        AccountService.get_account(db, account_id)
        return SnapshotService.get_snapshots(db, account_id, start_date, end_date)

    def backfill_snapshots(
        self, db: Session, account_id: str, start_date: date, end_date: Optional[date] = None
    ) -> int:
        """Create the missing daily snapshots in a range; returns how many.

        Raises:
            LedgerError: the range is inverted or longer than
                ``SNAPSHOT_BACKFILL_MAX_DAYS``.
        """
        AccountService.get_account(db, account_id)
        end_date = end_date or date.today()
        if start_date > end_date:
            raise LedgerError("start_date must not be after end_date")
        if (end_date - start_date).days + 1 > settings.SNAPSHOT_BACKFILL_MAX_DAYS:
            raise LedgerError(f"Snapshot backfill is limited to {settings.SNAPSHOT_BACKFILL_MAX_DAYS} days")
        with self.locks.hold(account_id):
            return SnapshotService.backfill_snapshots(db, account_id, start_date, end_date)

    # --- Reconciliation ---

    def run_reconciliation(self, db: Session, user_id: Optional[str] = None) -> ReconciliationReport:
        """Report-only sweep over one user's accounts, or every account."""
        accounts = AccountService.list_accounts(db, user_id)
        report = ReconciliationReport()
        for account in accounts:
            report.checks.append(self.reconciliation.check_balance(db, account))
            report.discrepancies.extend(self.reconciliation.check_holdings(db, account))
        report.duplicates = self.reconciliation.find_duplicates(db, [a.id for a in accounts])
        for uid in sorted({a.user_id for a in accounts}):
            report.suggestions.extend(self.reconciliation.suggest_fixes(db, uid))

        failed = [c for c in report.checks if not c.passed]
        logger.info(
            "Reconciliation of %d accounts: %d balance mismatches, %d discrepancies, %d duplicate groups",
            len(accounts), len(failed), len(report.discrepancies), len(report.duplicates),
        )
        return report

    def find_suggestion(self, db: Session, user_id: str, suggestion_id: str) -> Suggestion:
        """Raises KeyError when no current suggestion has that id."""
        for suggestion in self.reconciliation.suggest_fixes(db, user_id):
            if suggestion.id == suggestion_id:
                return suggestion
        raise KeyError(suggestion_id)

    def apply_fix(self, db: Session, user_id: str, suggestion_id: str) -> str:
        """Run one suggestion's auto-fix under its account lock.

        The suggestion is looked up again once the lock is held, so it
        reflects the account as the fix will see it.

        Raises:
            KeyError: no current suggestion has that id.
            ValueError: the suggestion cannot be fixed automatically.
        """
        account_id = self.find_suggestion(db, user_id, suggestion_id).account_id
        with self.locks.hold(account_id):
            suggestion = self.find_suggestion(db, user_id, suggestion_id)
            return self.reconciliation.apply_fix(db, suggestion)

    # --- Prices ---

    def backfill_prices(
        self,
        db: Session,
        account_id: Optional[str] = None,
        symbols: Optional[list[str]] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        cancel_token: Optional[CancellationToken] = None,
        max_symbols: Optional[int] = None,
    ) -> BackfillReport:
        """Fill missing daily prices for an account's symbols (or ``symbols``).

        Per-symbol failures are recorded as PRICE_UPDATE_FAILED.
        """
        crypto: set[str] = set()
        wanted = [normalize_symbol(s) for s in symbols or []]
        if account_id is not None:
            AccountService.get_account(db, account_id)
            for tx in TransactionService.list_for_account(db, account_id):
                if not tx.symbol:
                    continue
                if tx.symbol not in wanted:
                    wanted.append(tx.symbol)
                if tx.asset_type and tx.asset_type.lower() in CRYPTO_ASSET_TYPES:
                    crypto.add(tx.symbol)

        end_date = end_date or date.today()
        start_date = start_date or end_date - timedelta(days=settings.PRICE_BACKFILL_DAYS)
        limiter = self.rate_limiter or SlidingWindowRateLimiter(
            settings.PRICE_BACKFILL_MAX_CALLS, settings.PRICE_BACKFILL_WINDOW_SECONDS
        )

        report = self.prices.backfill(
            db,
            wanted,
            start_date,
            end_date,
            rate_limiter=limiter,
            cancel_token=cancel_token,
            crypto_symbols=crypto or None,
            retry_policy=self.retry_policy,
            max_symbols=max_symbols,
        )
        for symbol, message in report.errors.items():
            SyncErrorService.record(
                db,
                SyncErrorType.PRICE_UPDATE_FAILED,
                message,
                context={"symbol": symbol, "account_id": account_id},
                account_id=account_id,
            )
        return report

    # --- Sync errors ---

    def recover_error(self, db: Session, error: SyncError) -> RecoveryResult:
        return self.sync_errors.recover(db, error)

    # --- Undo / redo ---

    def _restore(self, db: Session, snapshot: dict[str, Any]) -> Transaction:
        account = AccountService.get_account(db, snapshot["account_id"])
        with self.locks.hold(account.id):
            candidate = TransactionService.from_snapshot(snapshot)
            self._check_replay(db, account.id, candidate)
            tx = TransactionService.restore(db, account, snapshot)
            self._retry_or_record(
                db,
                lambda: self._rebuild(db, account.id),
                SyncErrorType.HOLDINGS_RECALCULATION_FAILED,
                account.id,
                {"transaction_id": tx.id},
            )
        return tx

    def undo(self, db: Session) -> Optional[UndoAction]:
        """Reverse the most recent create or rollback; None if nothing to undo."""
        action = self.history.pop_undo()
        if action is None:
            return None
        try:
            if action.kind == "create":
                self.sync_errors.rollback_transaction(db, action.transaction_id, reason="undo")
            else:
                self._restore(db, action.snapshot)
        except LedgerError:
            self.history.push_undo(action)
            raise
        self.history.push_redo(action)
        return action

    def redo(self, db: Session) -> Optional[UndoAction]:
        """Re-apply the most recently undone action; None if nothing to redo."""
        action = self.history.pop_redo()
        if action is None:
            return None
        try:
            if action.kind == "create":
                self._restore(db, action.snapshot)
            else:
                self.sync_errors.rollback_transaction(db, action.transaction_id, reason="redo")
        except LedgerError:
            self.history.push_redo(action)
            raise
        self.history.push_undo(action)
        return action
