"""Account model - a user's brokerage, bank or crypto account."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Column, DateTime, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class Account(Base):
    """An account owning a transaction log.

    ``balance`` is the stored balance. It is maintained incrementally as
    transactions are appended or rolled back, and reconciliation compares
    it against the sum of the log.
    """

    __tablename__ = "accounts"

    id = Column(String(36), primary_key=True, default=generate_uuid)
    user_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    account_type = Column(String, nullable=True)  # "brokerage" / "bank" / "crypto" / ...
    balance = Column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    transactions = relationship("Transaction", back_populates="account")
    holdings = relationship("Holding", back_populates="account")
    holding_lots = relationship("HoldingLot", back_populates="account")
    snapshots = relationship("AccountSnapshot", back_populates="account")
