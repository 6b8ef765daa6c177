"""External price oracle integrations.

This package contains:
- Market data protocol: common interface for price providers
- Yahoo Finance client: equities and ETFs
- CoinGecko client: crypto
- Exceptions: typed provider error hierarchy
"""

from integrations.market_data_protocol import MarketDataProvider, PriceResult, Quote

__all__ = [
    "MarketDataProvider",
    "PriceResult",
    "Quote",
]
