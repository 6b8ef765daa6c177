"""HoldingLot model - one FIFO cost lot per buy transaction."""

from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import CheckConstraint, Column, Date, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid


class HoldingLot(Base):
    """A lot representing one acquisition of a symbol in an account.

    Lots are derived from the transaction log. Their ids come from the
    source transaction id so a rebuild reproduces the same rows.
    """

    __tablename__ = "holding_lots"
    __table_args__ = (
        CheckConstraint("cost_per_share >= 0", name="ck_holding_lot_cost_non_negative"),
        CheckConstraint("quantity > 0", name="ck_holding_lot_quantity_positive"),
        CheckConstraint("quantity_remaining >= 0", name="ck_holding_lot_remaining_non_negative"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(String(36), ForeignKey("accounts.id"), nullable=False, index=True)
    symbol = Column(String, nullable=False, index=True)
    purchase_date = Column(Date, nullable=False)
    quantity = Column(Numeric(18, 8), nullable=False)
    quantity_remaining = Column(Numeric(18, 8), nullable=False)
    cost_per_share = Column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    total_cost = Column(Numeric(18, 6), nullable=False, default=Decimal("0"))
    source_transaction_id = Column(String(36), nullable=True, index=True)
    status = Column(String, nullable=False, default="open", index=True)  # "open" / "closed"
    sequence = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    account = relationship("Account", back_populates="holding_lots")
    disposals = relationship("LotDisposal", back_populates="holding_lot", cascade="all, delete-orphan")
