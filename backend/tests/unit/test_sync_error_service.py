"""Tests for SyncErrorService: audit log, recovery and rollback."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from models import Holding, HoldingLot, SyncError, SyncErrorType, Transaction, TransactionRollback
from services.account_locks import AccountLockRegistry
from services.exceptions import DataIntegrityError, InsufficientSharesError
from services.holdings_service import HoldingsService
from services.lot_ledger_service import LotLedgerService
from services.retry import RetryPolicy
from services.snapshot_service import SnapshotService
from services.sync_error_service import SyncErrorService, verify_consistency
from tests.fixtures import add_price, add_transaction, buy, sell


@pytest.fixture
def service(market_data):
    return SyncErrorService(
        HoldingsService(market_data, use_oracle=False),
        RetryPolicy(max_attempts=2, base_delay=0, sleep=lambda s: None),
        AccountLockRegistry(),
    )


def _rebuild(db, account, service):
    LotLedgerService.rebuild_lots(db, account.id)
    service.holdings_service.reconstruct(db, account.id)


class TestAuditLog:
    def test_record_and_list_unresolved(self, db, account):
        error = SyncErrorService.record(
            db, SyncErrorType.NETWORK_ERROR, "timeout", context={"symbol": "AAPL"}, account_id=account.id
        )
        assert error.error_type == "NETWORK_ERROR"
        assert SyncErrorService.get_unresolved(db, account.id) == [error]
        assert SyncErrorService.get_unresolved(db, "other") == []

    def test_record_accepts_string_type(self, db):
        error = SyncErrorService.record(db, "PRICE_UPDATE_FAILED", "no data")
        assert error.error_type == SyncErrorType.PRICE_UPDATE_FAILED.value

    def test_unknown_type_rejected(self, db):
        with pytest.raises(ValueError):
            SyncErrorService.record(db, "NOT_A_TYPE", "x")

    def test_record_with_commit_survives_rollback(self, db, account):
        SyncErrorService.record(db, SyncErrorType.INSUFFICIENT_SHARES, "oversell", account_id=account.id,
                                commit=True)
        db.rollback()
        assert db.query(SyncError).count() == 1

    def test_mark_resolved(self, db):
        error = SyncErrorService.record(db, SyncErrorType.NETWORK_ERROR, "timeout")
        SyncErrorService.mark_resolved(db, error, "retried")
        assert error.resolved
        assert error.resolved_at is not None
        assert SyncErrorService.list_errors(db) == []
        assert SyncErrorService.list_errors(db, include_resolved=True) == [error]

    def test_clear_old_errors_only_removes_resolved(self, db):
        old = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(days=45)
        resolved = SyncErrorService.record(db, SyncErrorType.NETWORK_ERROR, "old resolved")
        unresolved = SyncErrorService.record(db, SyncErrorType.NETWORK_ERROR, "old open")
        recent = SyncErrorService.record(db, SyncErrorType.NETWORK_ERROR, "recent resolved")
        resolved.created_at = old
        unresolved.created_at = old
        SyncErrorService.mark_resolved(db, resolved, "done")
        SyncErrorService.mark_resolved(db, recent, "done")

        assert SyncErrorService.clear_old_errors(db, days=30) == 1
        remaining = {e.message for e in db.query(SyncError).all()}
        assert remaining == {"old open", "recent resolved"}


class TestVerifyConsistency:
    def test_consistent(self, db, account, service):
        buy(db, account, "AAPL", 10, 5, date(2024, 1, 2))
        _rebuild(db, account, service)
        verify_consistency(db, account.id)

    def test_mismatch_raises(self, db, account, service):
        buy(db, account, "AAPL", 10, 5, date(2024, 1, 2))
        _rebuild(db, account, service)
        db.query(Holding).one().quantity = Decimal("9")
        db.flush()
        with pytest.raises(DataIntegrityError, match="AAPL"):
            verify_consistency(db, account.id)


class TestRecover:
    @pytest.mark.parametrize(
        "error_type",
        [
            SyncErrorType.HOLDINGS_RECALCULATION_FAILED,
            SyncErrorType.LOT_TRACKING_FAILED,
            SyncErrorType.DATA_INTEGRITY_VIOLATION,
        ],
    )
    def test_derived_state_errors_rebuild(self, db, account, service, error_type):
        buy(db, account, "AAPL", 10, 5, date(2024, 1, 2))
        error = SyncErrorService.record(db, error_type, "failed", account_id=account.id)
        result = service.recover(db, error)
        assert result.success
        assert error.resolved
        assert db.query(Holding).count() == 1
        assert db.query(HoldingLot).count() == 1

    def test_snapshot_error_regenerates_days(self, db, account, service):
        buy(db, account, "AAPL", 10, 5, date(2024, 1, 2))
        add_price(db, "AAPL", date(2024, 3, 1), 8)
        SnapshotService.generate_snapshot(db, account.id, date(2024, 2, 1))
        buy(db, account, "AAPL", 5, 6, date(2024, 1, 15))
        error = SyncErrorService.record(
            db,
            SyncErrorType.SNAPSHOT_CREATION_FAILED,
            "failed",
            context={"since": "2024-01-15", "snapshot_date": "2024-03-01"},
            account_id=account.id,
        )

        result = service.recover(db, error)

        assert result.success
        assert error.resolved
        assert result.message == "Regenerated 2 snapshot(s) from 2024-01-15"
        stale = SnapshotService.get_snapshot(db, account.id, date(2024, 2, 1))
        assert Decimal(stale.holdings["AAPL"]["quantity"]) == Decimal("15")
        latest = SnapshotService.get_snapshot(db, account.id, date(2024, 3, 1))
        assert Decimal(latest.holdings_value) == Decimal("120")
        assert db.query(Holding).count() == 0

    def test_balance_error_recomputes(self, db, account, service):
        add_transaction(db, account, "deposit", date(2024, 1, 2), amount="100")
        account.balance = Decimal("1")
        error = SyncErrorService.record(db, SyncErrorType.BALANCE_UPDATE_FAILED, "x", account_id=account.id)
        assert service.recover(db, error).success
        assert Decimal(account.balance) == Decimal("100")

    def test_price_error_refetches(self, db, service, mock_provider):
        mock_provider.quotes["AAPL"] = "123"
        error = SyncErrorService.record(db, SyncErrorType.PRICE_UPDATE_FAILED, "x", context={"symbol": "AAPL"})
        result = service.recover(db, error)
        assert result.success
        assert mock_provider.quote_calls == ["AAPL"]

    def test_price_error_retries_then_fails(self, db, service, mock_provider):
        mock_provider.should_fail = True
        error = SyncErrorService.record(db, SyncErrorType.PRICE_UPDATE_FAILED, "x", context={"symbol": "AAPL"})
        result = service.recover(db, error)
        assert not result.success
        assert result.attempts == 2
        assert not error.resolved

    def test_insufficient_shares_not_recoverable(self, db, account, service):
        error = SyncErrorService.record(db, SyncErrorType.INSUFFICIENT_SHARES, "x", account_id=account.id)
        result = service.recover(db, error)
        assert not result.success
        assert not error.resolved

    def test_no_action_available(self, db, service):
        error = SyncErrorService.record(db, SyncErrorType.DUPLICATE_TRANSACTION, "x")
        assert service.recover(db, error).message == "No automatic recovery available"

    def test_recover_all(self, db, account, service):
        SyncErrorService.record(db, SyncErrorType.LOT_TRACKING_FAILED, "x", account_id=account.id)
        SyncErrorService.record(db, SyncErrorType.NETWORK_ERROR, "y", account_id=account.id)
        results = service.recover_all(db, account.id)
        assert sorted(r.success for r in results.values()) == [False, True]


class TestRollback:
    def test_removes_transaction_and_rebuilds(self, db, account, service):
        first = buy(db, account, "AAPL", 10, 5, date(2024, 1, 2))
        second = buy(db, account, "AAPL", 10, 8, date(2024, 1, 3))
        _rebuild(db, account, service)

        result = service.rollback_transaction(db, second.id, reason="typo")

        assert result.reversed_amount == Decimal("-80")
        assert Decimal(account.balance) == Decimal("-50")
        assert db.get(Transaction, second.id) is None
        assert [lot.source_transaction_id for lot in db.query(HoldingLot).all()] == [first.id]
        assert Decimal(db.query(Holding).one().quantity) == Decimal("10")
        audit = db.query(TransactionRollback).one()
        assert (audit.transaction_id, audit.reason) == (second.id, "typo")
        assert audit.snapshot["price_per_unit"] == "8"

    def test_rollback_that_would_oversell_is_refused(self, db, account, service):
        purchase = buy(db, account, "AAPL", 10, 5, date(2024, 1, 2))
        sell(db, account, "AAPL", 10, 6, date(2024, 1, 3))
        _rebuild(db, account, service)

        with pytest.raises(InsufficientSharesError):
            service.rollback_transaction(db, purchase.id)
        assert db.get(Transaction, purchase.id) is not None
        assert db.query(TransactionRollback).count() == 0
