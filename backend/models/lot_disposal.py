"""LotDisposal model - records a quantity taken from a lot by a sell."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class LotDisposal(Base):
    """Quantity consumed from one lot by one sell.

    A sell spanning several lots creates one disposal per lot, all sharing
    ``sell_transaction_id``.
    """

    __tablename__ = "lot_disposals"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_lot_disposal_quantity_positive"),
        CheckConstraint("proceeds_per_unit >= 0", name="ck_lot_disposal_proceeds_non_negative"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    holding_lot_id = Column(String(36), ForeignKey("holding_lots.id"), nullable=False, index=True)
    account_id = Column(String(36), ForeignKey("accounts.id"), nullable=False, index=True)
    symbol = Column(String, nullable=False)
    sell_transaction_id = Column(String(36), nullable=True, index=True)
    disposal_date = Column(Date, nullable=False)
    quantity = Column(Numeric(18, 8), nullable=False)
    cost_per_share = Column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    proceeds_per_unit = Column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    realized_gain = Column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    holding_lot = relationship("HoldingLot", back_populates="disposals")
