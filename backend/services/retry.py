"""Bounded retry with linear backoff."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Generic, Optional, TypeVar

from pydantic import ValidationError
from sqlalchemy.orm import Session

from integrations.exceptions import ProviderError
from services.exceptions import LedgerError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """How many times to try and how long to wait in between.

    Attempt ``n`` (1-based) that fails waits ``base_delay * n`` seconds
    before attempt ``n + 1``.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    sleep: Callable[[float], None] = time.sleep

    def delay_for(self, attempt: int) -> float:
        return self.base_delay * attempt


@dataclass
class RetryResult(Generic[T]):
    success: bool
    result: Optional[T] = None
    error: Optional[Exception] = None
    attempts: int = 0


def is_retriable(exc: Exception) -> bool:
    """Whether another attempt could plausibly succeed.

    Validation failures and ledger errors flagged non-retriable (such as
    insufficient shares) fail fast; provider errors carry their own flag;
    anything unexpected is assumed transient.
    """
    if isinstance(exc, ValidationError):
        return False
    if isinstance(exc, LedgerError):
        return exc.retriable
    if isinstance(exc, ProviderError):
        return bool(exc.retriable)
    return True


def _in_savepoint(session: Session, operation: Callable[[], T]) -> T:
    with session.begin_nested():
        return operation()


def with_retry(
    operation: Callable[[], T],
    policy: Optional[RetryPolicy] = None,
    description: str = "operation",
    session: Optional[Session] = None,
) -> RetryResult[T]:
    """Run ``operation`` until it succeeds or the policy is exhausted.

    Never raises for failures of ``operation``; the last error is returned
    in the result.

    When ``session`` is given each attempt runs in its own SAVEPOINT, so a
    failed attempt (including a failed flush) is rolled back before the
    next one and the session stays usable afterwards.
    """
    policy = policy or RetryPolicy()
    last_error: Optional[Exception] = None

    for attempt in range(1, policy.max_attempts + 1):
        try:
            if session is not None:
                result = _in_savepoint(session, operation)
            else:
                result = operation()
            return RetryResult(success=True, result=result, attempts=attempt)
        except Exception as e:
            last_error = e
            if not is_retriable(e):
                logger.warning("%s failed with non-retriable error: %s", description, e)
                return RetryResult(success=False, error=e, attempts=attempt)
            if attempt < policy.max_attempts:
                delay = policy.delay_for(attempt)
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                    description, attempt, policy.max_attempts, delay, e,
                )
                policy.sleep(delay)

    logger.error("%s failed after %d attempts: %s", description, policy.max_attempts, last_error)
    return RetryResult(success=False, error=last_error, attempts=policy.max_attempts)
