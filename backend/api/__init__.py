"""API route handlers."""
from . import accounts, lots, prices, reconciliation, sync_errors

__all__ = ["accounts", "lots", "prices", "reconciliation", "sync_errors"]
