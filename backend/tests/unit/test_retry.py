"""Tests for the bounded retry helper."""

from unittest.mock import MagicMock

import pytest
from pydantic import BaseModel, ValidationError

from integrations.exceptions import ProviderAPIError, ProviderAuthError, ProviderConnectionError
from models import SyncError
from services.exceptions import DataIntegrityError, InsufficientSharesError
from services.retry import RetryPolicy, is_retriable, with_retry


class _Model(BaseModel):
    value: int


def _validation_error() -> ValidationError:
    try:
        _Model(value="nope")
    except ValidationError as e:
        return e
    raise AssertionError("expected a validation error")


@pytest.fixture
def policy():
    delays: list[float] = []
    p = RetryPolicy(max_attempts=3, base_delay=1.0, sleep=delays.append)
    p.delays = delays
    return p


class TestIsRetriable:
    @pytest.mark.parametrize(
        "error, expected",
        [
            (ProviderConnectionError("down"), True),
            (ProviderAPIError("busy", status_code=429), True),
            (ProviderAPIError("boom", status_code=503), True),
            (ProviderAPIError("bad", status_code=404), False),
            (ProviderAuthError("denied"), False),
            (InsufficientSharesError("AAPL", 2, 1), False),
            (DataIntegrityError("drift"), True),
            (RuntimeError("unexpected"), True),
        ],
    )
    def test_classification(self, error, expected):
        assert is_retriable(error) is expected

    def test_validation_error_not_retriable(self):
        assert is_retriable(_validation_error()) is False


class TestWithRetry:
    def test_success_first_try(self, policy):
        result = with_retry(lambda: 42, policy)
        assert (result.success, result.result, result.attempts) == (True, 42, 1)
        assert policy.delays == []

    def test_linear_backoff_then_success(self, policy):
        op = MagicMock(side_effect=[RuntimeError("a"), RuntimeError("b"), "ok"])
        result = with_retry(op, policy)
        assert result.success
        assert result.attempts == 3
        assert policy.delays == [1.0, 2.0]

    def test_exhausted_returns_last_error(self, policy):
        op = MagicMock(side_effect=RuntimeError("still broken"))
        result = with_retry(op, policy)
        assert not result.success
        assert str(result.error) == "still broken"
        assert op.call_count == 3

    def test_non_retriable_fails_fast(self, policy):
        op = MagicMock(side_effect=InsufficientSharesError("AAPL", 5, 1))
        result = with_retry(op, policy)
        assert not result.success
        assert result.attempts == 1
        assert policy.delays == []

    def test_failed_attempt_rolled_back_with_session(self, db, policy):
        def operation():
            db.add(SyncError(error_type="NETWORK_ERROR", message=f"attempt {len(policy.delays) + 1}"))
            db.flush()
            if not policy.delays:
                raise RuntimeError("transient")
            return "ok"

        result = with_retry(operation, policy, session=db)

        assert (result.success, result.attempts) == (True, 2)
        assert [e.message for e in db.query(SyncError).all()] == ["attempt 2"]

    def test_session_usable_after_exhausted_flush_failures(self, db, policy):
        db.add(SyncError(id="fixed", error_type="NETWORK_ERROR", message="existing"))
        db.flush()

        def operation():
            db.add(SyncError(id="fixed-copy", error_type="NETWORK_ERROR", message=None))
            db.flush()

        result = with_retry(operation, policy, session=db)

        assert not result.success
        assert result.attempts == 3
        db.add(SyncError(error_type="NETWORK_ERROR", message="after"))
        db.flush()
        assert {e.message for e in db.query(SyncError).all()} == {"existing", "after"}
