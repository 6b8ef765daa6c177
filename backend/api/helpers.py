"""Shared API helpers for route handlers.

Dependency providers and the mapping from ledger/provider exceptions to
HTTP responses used across route files.
"""

from typing import NoReturn, Optional, TypeVar

from fastapi import HTTPException
from sqlalchemy.orm import Session

from database import Base
from integrations.exceptions import ProviderError
from services.exceptions import (
    AccountNotFoundError,
    DataIntegrityError,
    InsufficientSharesError,
    LedgerError,
    TransactionNotFoundError,
    TransactionValidationError,
)
from services.ledger_service import LedgerService

T = TypeVar("T", bound=Base)

# Dependency injection for testing
_ledger_service_override: Optional[LedgerService] = None


def get_ledger_service() -> LedgerService:
    """Get LedgerService instance, allowing for test overrides."""
    if _ledger_service_override is not None:
        return _ledger_service_override
    return LedgerService()


def set_ledger_service_override(service: Optional[LedgerService]) -> None:
    """Set a LedgerService override for testing."""
    global _ledger_service_override
    _ledger_service_override = service


def get_or_404(db: Session, model: type[T], entity_id: str, detail: str = "Not found") -> T:
    """Fetch a single entity by primary key or raise 404.

    Raises:
        HTTPException: 404 if the entity doesn't exist.
    """
    entity = db.get(model, entity_id)
    if not entity:
        raise HTTPException(status_code=404, detail=detail)
    return entity


def raise_http(error: Exception) -> NoReturn:
    """Translate a ledger or provider exception into an HTTPException.

    - 404: unknown account or transaction
    - 409: oversell, or derived state that cannot be rebuilt
    - 422: transaction validation failure
    - 502: price oracle failure
    """
    if isinstance(error, (AccountNotFoundError, TransactionNotFoundError)):
        raise HTTPException(status_code=404, detail=str(error)) from error
    if isinstance(error, TransactionValidationError):
        raise HTTPException(status_code=422, detail=error.errors) from error
    if isinstance(error, (InsufficientSharesError, DataIntegrityError)):
        raise HTTPException(status_code=409, detail=str(error)) from error
    if isinstance(error, ProviderError):
        raise HTTPException(status_code=502, detail=str(error)) from error
    if isinstance(error, LedgerError):
        raise HTTPException(status_code=400, detail=str(error)) from error
    raise error
