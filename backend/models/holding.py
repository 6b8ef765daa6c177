"""Holding model - derived position cache per (account, symbol)."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import Column, Date, DateTime, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class Holding(Base):
    """Current position in a symbol, rebuilt from the transaction log.

    ``cost_basis`` is the weighted-average basis. ``price_source`` records
    which link of the pricing chain produced ``current_price``:
    "store" / "oracle" / "cost_basis".
    """

    __tablename__ = "holdings"
    __table_args__ = (
        UniqueConstraint("account_id", "symbol", name="uix_holding_account_symbol"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(String(36), ForeignKey("accounts.id"), nullable=False, index=True)
    symbol = Column(String, nullable=False, index=True)
    quantity = Column(Numeric(18, 8), nullable=False)
    cost_basis = Column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    current_price = Column(Numeric(18, 6), nullable=True)
    current_value = Column(Numeric(18, 6), nullable=True)
    asset_type = Column(String, nullable=True)
    price_source = Column(String, nullable=True)
    price_date = Column(Date, nullable=True)
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    account = relationship("Account", back_populates="holdings")
