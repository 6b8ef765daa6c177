"""Yahoo Finance market data provider implementation."""

import logging
from datetime import date, timedelta
from decimal import Decimal

import yfinance as yf

from integrations.exceptions import ProviderConnectionError, ProviderDataError
from integrations.market_data_protocol import PriceResult, Quote

logger = logging.getLogger(__name__)

_QUOTE_LOOKBACK_DAYS = 10


def _to_decimal(value) -> Decimal | None:
    if value is None:
        return None
    f = float(value)
    if f != f:  # NaN
        return None
    return Decimal(str(round(f, 6)))


def _series(df, metric: str, symbol: str):
    """Return the ``metric`` column for ``symbol`` or None.

    yfinance returns (metric, symbol) MultiIndex columns for multi-ticker
    downloads and, in recent versions, for single tickers too.
    """
    if (metric, symbol) in df.columns:
        return df[(metric, symbol)]
    if metric in df.columns and getattr(df.columns, "nlevels", 1) == 1:
        return df[metric]
    return None


class YahooFinanceClient:
    """Market data provider using Yahoo Finance (yfinance library).

    Handles equities, ETFs, and other traditional securities.
    Crypto symbols are routed to CoinGecko by the MarketDataService.
    """

    @property
    def provider_name(self) -> str:
        return "yahoo"

    def _download(self, symbols: list[str], start: date, end: date):
        # yfinance end is exclusive, so add one day
        try:
            return yf.download(
                tickers=symbols,
                start=start.isoformat(),
                end=(end + timedelta(days=1)).isoformat(),
                auto_adjust=True,
                progress=False,
            )
        except Exception as e:
            raise ProviderConnectionError(
                f"yfinance download failed for {symbols}: {e}", provider_name="yahoo"
            ) from e

    def get_price_history(
        self, symbols: list[str], start_date: date, end_date: date
    ) -> dict[str, list[PriceResult]]:
        """Fetch daily OHLCV bars from Yahoo Finance.

        For single-date requests (start == end), uses a 10-day lookback
        to handle weekends and holidays, returning only the most recent
        bar on or before the requested date.
        """
        if not symbols:
            return {}

        logger.info(
            "Yahoo Finance: fetching prices for %d symbols (%s to %s)",
            len(symbols), start_date, end_date,
        )

        result: dict[str, list[PriceResult]] = {s: [] for s in symbols}

        single_date = start_date == end_date
        download_start = start_date - timedelta(days=_QUOTE_LOOKBACK_DAYS) if single_date else start_date

        df = self._download(symbols, download_start, end_date)
        if df is None or df.empty:
            return result

        for symbol in symbols:
            try:
                closes = _series(df, "Close", symbol)
                if closes is None:
                    continue
                closes = closes.dropna()
                closes = closes[closes.index.date <= end_date]
                if closes.empty:
                    continue
                if single_date:
                    closes = closes.iloc[-1:]

                opens = _series(df, "Open", symbol)
                highs = _series(df, "High", symbol)
                lows = _series(df, "Low", symbol)
                volumes = _series(df, "Volume", symbol)

                for ts, price in closes.items():
                    volume = volumes.get(ts) if volumes is not None else None
                    result[symbol].append(
                        PriceResult(
                            symbol=symbol,
                            price_date=ts.date(),
                            close_price=_to_decimal(price),
                            source="yahoo",
                            open_price=_to_decimal(opens.get(ts)) if opens is not None else None,
                            high_price=_to_decimal(highs.get(ts)) if highs is not None else None,
                            low_price=_to_decimal(lows.get(ts)) if lows is not None else None,
                            volume=int(volume) if volume is not None and volume == volume else None,
                        )
                    )
            except (KeyError, TypeError, ValueError):
                logger.warning("Failed to parse prices for %s", symbol, exc_info=True)

        return result

    def get_quote(self, symbol: str) -> Quote:
        """Latest close on or before today."""
        today = date.today()
        bars = self.get_price_history([symbol], today, today).get(symbol) or []
        if not bars:
            raise ProviderDataError(f"No Yahoo Finance price for {symbol}", provider_name="yahoo")
        bar = bars[-1]
        return Quote(
            symbol=symbol,
            last_price=bar.close_price,
            quote_date=bar.price_date,
            source="yahoo",
            volume=bar.volume,
        )
