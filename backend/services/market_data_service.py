"""Routes price requests to the equity or crypto oracle."""

import logging
from datetime import date
from typing import Optional

from config import settings
from integrations.market_data_protocol import MarketDataProvider, PriceResult, Quote
from utils.ticker import is_crypto_symbol, normalize_symbol

logger = logging.getLogger(__name__)


class MarketDataService:
    """Front door to the price oracles used by the price store and pricer.

    Equities go to Yahoo Finance and crypto to CoinGecko. Either oracle
    can be injected; missing ones are built lazily so tests and
    report-only callers never touch the network.
    """

    def __init__(
        self,
        provider: Optional[MarketDataProvider] = None,
        crypto_provider: Optional[MarketDataProvider] = None,
    ):
        self._provider = provider
        self._crypto_provider = crypto_provider

    @property
    def provider(self) -> MarketDataProvider:
        if self._provider is None:
            from integrations.yahoo_finance_client import YahooFinanceClient

            self._provider = YahooFinanceClient()
        return self._provider

    @property
    def crypto_provider(self) -> MarketDataProvider:
        if self._crypto_provider is None:
            from integrations.coingecko_client import CoinGeckoClient

            self._crypto_provider = CoinGeckoClient(api_key=settings.COINGECKO_API_KEY or None)
        return self._crypto_provider

    @staticmethod
    def _is_crypto(symbol: str, crypto_symbols: Optional[set[str]]) -> bool:
        if crypto_symbols is not None:
            return symbol in {normalize_symbol(s) for s in crypto_symbols}
        return is_crypto_symbol(symbol)

    def get_price_history(
        self,
        symbols: list[str],
        start_date: date,
        end_date: date,
        crypto_symbols: Optional[set[str]] = None,
    ) -> dict[str, list[PriceResult]]:
        """Daily bars keyed by normalized symbol.

        ``crypto_symbols`` pins which symbols go to the crypto oracle;
        without it each symbol is classified by ``is_crypto_symbol``.
        Provider errors propagate to the caller.
        """
        if not symbols:
            return {}

        normalized = [normalize_symbol(s) for s in symbols]
        crypto = [s for s in normalized if self._is_crypto(s, crypto_symbols)]
        equities = [s for s in normalized if s not in crypto]

        bars: dict[str, list[PriceResult]] = {}
        if equities:
            bars.update(self.provider.get_price_history(equities, start_date, end_date))
        if crypto:
            bars.update(self.crypto_provider.get_price_history(crypto, start_date, end_date))
        return bars

    def get_quote(self, symbol: str, crypto_symbols: Optional[set[str]] = None) -> Quote:
        upper = normalize_symbol(symbol)
        oracle = self.crypto_provider if self._is_crypto(upper, crypto_symbols) else self.provider
        logger.debug("Quote for %s via %s", upper, oracle.provider_name)
        return oracle.get_quote(upper)
