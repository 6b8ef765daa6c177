"""Mock market data providers for testing."""

from datetime import date
from decimal import Decimal

from integrations.exceptions import ProviderConnectionError, ProviderDataError
from integrations.market_data_protocol import PriceResult, Quote


class MockMarketDataProvider:
    """Mock market data provider for testing.

    Implements the MarketDataProvider protocol using in-memory dicts and
    records every call. ``fail_times`` makes the next N calls raise a
    retriable connection error; ``should_fail`` makes every call raise.
    """

    def __init__(
        self,
        prices: dict[str, list[PriceResult]] | None = None,
        quotes: dict[str, Decimal] | None = None,
        should_fail: bool = False,
        fail_times: int = 0,
        name: str = "mock",
    ):
        self.prices = prices or {}
        self.quotes = quotes or {}
        self.should_fail = should_fail
        self.fail_times = fail_times
        self.name = name
        self.history_calls: list[tuple[list[str], date, date]] = []
        self.quote_calls: list[str] = []

    @property
    def provider_name(self) -> str:
        return self.name

    def _maybe_fail(self) -> None:
        if self.should_fail:
            raise ProviderConnectionError("Mock market data error", provider_name=self.name)
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ProviderConnectionError("Mock transient error", provider_name=self.name)

    def get_price_history(
        self, symbols: list[str], start_date: date, end_date: date
    ) -> dict[str, list[PriceResult]]:
        self.history_calls.append((list(symbols), start_date, end_date))
        self._maybe_fail()
        result: dict[str, list[PriceResult]] = {}
        for symbol in symbols:
            result[symbol] = [
                pr
                for pr in self.prices.get(symbol, [])
                if start_date <= pr.price_date <= end_date
            ]
        return result

    def get_quote(self, symbol: str) -> Quote:
        self.quote_calls.append(symbol)
        self._maybe_fail()
        if symbol not in self.quotes:
            raise ProviderDataError(f"No mock quote for {symbol}", provider_name=self.name)
        return Quote(
            symbol=symbol,
            last_price=Decimal(str(self.quotes[symbol])),
            quote_date=date(2024, 6, 3),
            source=self.name,
        )
