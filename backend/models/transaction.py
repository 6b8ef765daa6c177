"""Transaction model - the append-only ledger of account events."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from database import Base
from models.utils import generate_uuid

TRANSACTION_TYPES = (
    "buy",
    "sell",
    "dividend",
    "interest",
    "deposit",
    "withdrawal",
    "fee",
    "split",
)

# Types that move share quantity
SECURITY_TYPES = frozenset({"buy", "sell", "split"})


class Transaction(Base):
    """A single immutable event in an account's log.

    Rows are never edited once written; only ``transaction_metadata`` is
    annotated (realized gain of a sell). ``sequence`` is a per-account
    insertion counter used to order same-day events.

    For ``split`` rows, ``quantity`` carries the split ratio and
    ``amount`` is zero.
    """

    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("account_id", "sequence", name="uix_transaction_account_sequence"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    account_id = Column(String(36), ForeignKey("accounts.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    type = Column(String, nullable=False)
    symbol = Column(String, nullable=True, index=True)
    quantity = Column(Numeric(18, 8), nullable=True)
    price_per_unit = Column(Numeric(18, 6), nullable=True)
    amount = Column(Numeric(18, 6), nullable=False)
    transaction_date = Column(Date, nullable=False, index=True)
    asset_type = Column(String, nullable=True)  # "stock" / "etf" / "crypto" / ...
    description = Column(String, nullable=True)
    transaction_metadata = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    account = relationship("Account", back_populates="transactions")
