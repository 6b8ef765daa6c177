"""CoinGecko market data provider for cryptocurrency prices."""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

import httpx

from integrations.exceptions import (
    ProviderAPIError,
    ProviderAuthError,
    ProviderConnectionError,
    ProviderDataError,
)
from integrations.market_data_protocol import PriceResult, Quote

logger = logging.getLogger(__name__)

# Hardcoded mapping for the most common crypto symbols.
# Covers the vast majority of real portfolios without an API call.
KNOWN_COIN_IDS: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "SOL": "solana",
    "DOGE": "dogecoin",
    "ADA": "cardano",
    "XRP": "ripple",
    "DOT": "polkadot",
    "AVAX": "avalanche-2",
    "MATIC": "matic-network",
    "LINK": "chainlink",
    "UNI": "uniswap",
    "ATOM": "cosmos",
    "LTC": "litecoin",
    "XLM": "stellar",
    "ALGO": "algorand",
    "SHIB": "shiba-inu",
    "USDC": "usd-coin",
    "USDT": "tether",
}


def _decimal(value) -> Decimal:
    return Decimal(str(round(float(value), 6)))


class CoinGeckoClient:
    """Market data provider using the CoinGecko API for crypto prices."""

    def __init__(self, api_key: Optional[str] = None):
        """Initialize with optional API key.

        Args:
            api_key: CoinGecko demo API key. If provided, uses the
                     x-cg-demo-api-key header for higher rate limits.
                     If None, uses the keyless public API.
        """
        headers: dict[str, str] = {}
        if api_key:
            headers["x-cg-demo-api-key"] = api_key
        self._client = httpx.Client(
            base_url="https://api.coingecko.com/api/v3",
            headers=headers,
            timeout=30.0,
        )
        self._resolved_ids: dict[str, str] = dict(KNOWN_COIN_IDS)

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    @property
    def provider_name(self) -> str:
        return "coingecko"

    def _request(self, path: str, params: dict) -> dict:
        """GET ``path`` and return the decoded JSON body.

        Transport failures and error statuses are translated into the
        ProviderError hierarchy; 429 and 5xx come back retriable so the
        caller's retry policy decides whether to try again.
        """
        try:
            response = self._client.request("GET", path, params=params)
        except httpx.TransportError as e:
            raise ProviderConnectionError(f"CoinGecko request failed: {e}", provider_name="coingecko") from e

        if response.status_code in (401, 403):
            raise ProviderAuthError(
                f"CoinGecko rejected credentials ({response.status_code})", provider_name="coingecko"
            )
        if response.status_code >= 400:
            raise ProviderAPIError(
                f"CoinGecko returned {response.status_code} for {path}",
                provider_name="coingecko",
                status_code=response.status_code,
            )
        try:
            return response.json()
        except ValueError as e:
            raise ProviderDataError(f"CoinGecko returned invalid JSON for {path}", provider_name="coingecko") from e

    def _resolve_coin_id(self, symbol: str) -> Optional[str]:
        """Resolve a ticker symbol to a CoinGecko coin ID.

        Checks the cached mapping first, then falls back to the
        /search endpoint, preferring the best market_cap_rank among
        exact symbol matches.
        """
        upper = symbol.upper()
        if upper in self._resolved_ids:
            return self._resolved_ids[upper]

        data = self._request("/search", {"query": symbol})
        matches = [c for c in data.get("coins", []) if c.get("symbol", "").upper() == upper]
        if not matches:
            logger.warning("CoinGecko: no matching coin for symbol %s", symbol)
            return None

        ranked = [c for c in matches if c.get("market_cap_rank") is not None]
        best = min(ranked, key=lambda c: c["market_cap_rank"]) if ranked else matches[0]

        coin_id = best["id"]
        self._resolved_ids[upper] = coin_id
        logger.info("CoinGecko: resolved %s -> %s", symbol, coin_id)
        return coin_id

    def get_price_history(
        self, symbols: list[str], start_date: date, end_date: date
    ) -> dict[str, list[PriceResult]]:
        """Fetch daily crypto bars from CoinGecko.

        CoinGecko returns intraday points for short ranges; they are folded
        into one bar per UTC day (first point opens, last point closes).
        """
        if not symbols:
            return {}

        logger.info(
            "CoinGecko: fetching prices for %d symbols (%s to %s)",
            len(symbols), start_date, end_date,
        )

        result: dict[str, list[PriceResult]] = {s: [] for s in symbols}

        from_ts = int(datetime.combine(start_date, datetime.min.time(), tzinfo=timezone.utc).timestamp())
        to_ts = int(datetime.combine(end_date, datetime.max.time(), tzinfo=timezone.utc).timestamp())

        for symbol in symbols:
            coin_id = self._resolve_coin_id(symbol)
            if coin_id is None:
                continue

            data = self._request(
                f"/coins/{coin_id}/market_chart/range",
                {"vs_currency": "usd", "from": str(from_ts), "to": str(to_ts)},
            )
            prices = data.get("prices", [])
            if not prices:
                logger.warning("CoinGecko: no price data for %s (%s)", symbol, coin_id)
                continue

            # date -> [open, high, low, close]
            bars: dict[date, list[Decimal]] = {}
            for timestamp_ms, price in prices:
                day = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).date()
                value = _decimal(price)
                bar = bars.get(day)
                if bar is None:
                    bars[day] = [value, value, value, value]
                else:
                    bar[1] = max(bar[1], value)
                    bar[2] = min(bar[2], value)
                    bar[3] = value

            volumes: dict[date, int] = {}
            for timestamp_ms, volume in data.get("total_volumes", []):
                day = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).date()
                volumes[day] = int(volume)

            for day, (open_, high, low, close) in sorted(bars.items()):
                if start_date <= day <= end_date:
                    result[symbol].append(
                        PriceResult(
                            symbol=symbol,
                            price_date=day,
                            close_price=close,
                            source="coingecko",
                            open_price=open_,
                            high_price=high,
                            low_price=low,
                            volume=volumes.get(day),
                        )
                    )

        return result

    def get_quote(self, symbol: str) -> Quote:
        """Current USD price from /simple/price."""
        coin_id = self._resolve_coin_id(symbol)
        if coin_id is None:
            raise ProviderDataError(f"Unknown crypto symbol {symbol}", provider_name="coingecko")

        data = self._request("/simple/price", {"ids": coin_id, "vs_currencies": "usd"})
        price = data.get(coin_id, {}).get("usd")
        if price is None:
            raise ProviderDataError(f"CoinGecko has no USD price for {symbol}", provider_name="coingecko")
        return Quote(
            symbol=symbol,
            last_price=_decimal(price),
            quote_date=datetime.now(timezone.utc).date(),
            source="coingecko",
        )
