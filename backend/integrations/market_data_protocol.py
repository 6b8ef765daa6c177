"""Market data provider protocol definitions.

Defines the interface the price store uses to reach an external price
oracle: daily bars for backfill and a latest quote for valuation.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Protocol


@dataclass
class PriceResult:
    """A daily bar for a symbol on a specific trading date."""

    symbol: str
    price_date: date  # Actual trading date (may differ from requested for weekends/holidays)
    close_price: Decimal
    source: str  # e.g., "yahoo"
    open_price: Decimal | None = None
    high_price: Decimal | None = None
    low_price: Decimal | None = None
    volume: int | None = None


@dataclass
class Quote:
    """Most recent known price for a symbol."""

    symbol: str
    last_price: Decimal
    quote_date: date
    source: str
    bid: Decimal | None = None
    ask: Decimal | None = None
    volume: int | None = None


class MarketDataProvider(Protocol):
    """Protocol for market data providers.

    Both methods may raise :class:`~integrations.exceptions.ProviderError`.
    """

    @property
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'yahoo')."""
        ...

    def get_price_history(
        self, symbols: list[str], start_date: date, end_date: date
    ) -> dict[str, list[PriceResult]]:
        """Fetch daily bars for the given symbols and date range.

        Args:
            symbols: List of ticker symbols.
            start_date: Start date (inclusive).
            end_date: End date (inclusive).

        Returns:
            Dict mapping each symbol to its list of daily bars.
            Unknown symbols map to an empty list.
        """
        ...

    def get_quote(self, symbol: str) -> Quote:
        """Return the latest price for ``symbol``.

        Raises:
            ProviderDataError: if the provider has no price for the symbol.
        """
        ...
