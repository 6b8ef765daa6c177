"""AccountSnapshot model - an account's valuation as of one calendar day."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import JSON, Column, Date, DateTime, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class AccountSnapshot(Base):
    """Cash, positions and total value of an account at the end of a day.

    Derived from the transactions dated on or before ``snapshot_date`` and
    the price store; regenerating a day replaces its row. ``holdings`` maps
    symbol to quantity, price, value and price source; ``asset_breakdown``
    maps asset type to value.
    """

    __tablename__ = "account_snapshots"
    __table_args__ = (
        UniqueConstraint("account_id", "snapshot_date", name="uix_account_snapshot_date"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(String(36), ForeignKey("accounts.id"), nullable=False, index=True)
    snapshot_date = Column(Date, nullable=False, index=True)
    cash_balance = Column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    holdings_value = Column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    cost_basis = Column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    total_value = Column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    holdings = Column(JSON, nullable=True)
    asset_breakdown = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    account = relationship("Account", back_populates="snapshots")
