"""SyncError model - audit log of failed ledger operations."""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import JSON, Boolean, Column, DateTime, String, Text

from database import Base
from models.utils import generate_uuid


class SyncErrorType(str, Enum):
    HOLDINGS_RECALCULATION_FAILED = "HOLDINGS_RECALCULATION_FAILED"
    LOT_TRACKING_FAILED = "LOT_TRACKING_FAILED"
    BALANCE_UPDATE_FAILED = "BALANCE_UPDATE_FAILED"
    PRICE_UPDATE_FAILED = "PRICE_UPDATE_FAILED"
    SNAPSHOT_CREATION_FAILED = "SNAPSHOT_CREATION_FAILED"
    INSUFFICIENT_SHARES = "INSUFFICIENT_SHARES"
    DUPLICATE_TRANSACTION = "DUPLICATE_TRANSACTION"
    DATA_INTEGRITY_VIOLATION = "DATA_INTEGRITY_VIOLATION"
    NETWORK_ERROR = "NETWORK_ERROR"


class SyncError(Base):
    """A recorded failure. Rows are only ever marked resolved, never edited otherwise."""

    __tablename__ = "sync_errors"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    error_type = Column(String, nullable=False, index=True)
    message = Column(Text, nullable=False)
    context = Column(JSON, nullable=True)
    account_id = Column(String(36), nullable=True, index=True)
    resolved = Column(Boolean, nullable=False, default=False, index=True)
    resolution = Column(Text, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), index=True)
    resolved_at = Column(DateTime, nullable=True)
