"""PriceHistory model - daily OHLC bars per symbol."""

from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, Date, DateTime, Float, Numeric, String, UniqueConstraint

from database import Base
from models.utils import generate_uuid

QUALITY_REAL = 1.0
QUALITY_FILL = 0.7
QUALITY_INTERPOLATED = 0.5
QUALITY_NONE = 0.0

# Higher wins when two writes share a quality
SOURCE_PRIORITY = {
    "manual": 3,
    "provider": 2,
    "estimate": 1,
}


def source_priority(source: str | None) -> int:
    """Map a concrete source name to its priority class."""
    if not source:
        return 0
    if source == "manual":
        return SOURCE_PRIORITY["manual"]
    if source.startswith("interpolated") or source == "estimate":
        return SOURCE_PRIORITY["estimate"]
    return SOURCE_PRIORITY["provider"]


class PriceHistory(Base):
    """A daily price bar. At most one row per (symbol, price_date)."""

    __tablename__ = "price_history"
    __table_args__ = (
        UniqueConstraint("symbol", "price_date", name="uix_price_history_symbol_date"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid)
    symbol = Column(String, nullable=False, index=True)
    price_date = Column(Date, nullable=False, index=True)
    open_price = Column(Numeric(18, 6), nullable=True)
    high_price = Column(Numeric(18, 6), nullable=True)
    low_price = Column(Numeric(18, 6), nullable=True)
    close_price = Column(Numeric(18, 6), nullable=False)
    volume = Column(BigInteger, nullable=True)
    source = Column(String, nullable=False)  # "yahoo" / "coingecko" / "manual" / "interpolated_*"
    quality = Column(Float, nullable=False, default=QUALITY_REAL)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )
