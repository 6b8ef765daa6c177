"""TransactionRollback model - audit row for a removed transaction."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, String, Text

from database import Base
from models.utils import generate_uuid


class TransactionRollback(Base):
    __tablename__ = "transaction_rollbacks"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    transaction_id = Column(String(36), nullable=False, index=True)
    account_id = Column(String(36), nullable=False, index=True)
    reason = Column(Text, nullable=True)
    snapshot = Column(JSON, nullable=False)
    rolled_back_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
