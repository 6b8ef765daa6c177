"""Unit tests for CoinGeckoClient (mocked httpx)."""

from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import patch

import httpx
import pytest

from integrations.coingecko_client import KNOWN_COIN_IDS, CoinGeckoClient
from integrations.exceptions import (
    ProviderAPIError,
    ProviderAuthError,
    ProviderConnectionError,
    ProviderDataError,
)


@pytest.fixture
def client():
    c = CoinGeckoClient()
    yield c
    c.close()


def _response(status: int, body=None) -> httpx.Response:
    return httpx.Response(status, json=body if body is not None else {}, request=httpx.Request("GET", "https://x"))


def _ts_ms(year: int, month: int, day: int, hour: int = 0) -> float:
    """Convert a date to unix timestamp in milliseconds."""
    return datetime(year, month, day, hour, tzinfo=timezone.utc).timestamp() * 1000


def _routes(**bodies):
    """side_effect that answers each request by matching a path substring."""
    calls = []

    def handler(method, path, params=None):
        calls.append((path, params))
        for fragment, body in bodies.items():
            if fragment in path:
                return _response(200, body)
        return _response(404)

    handler.calls = calls
    return handler


class TestKnownCoinIds:
    def test_common_coins_in_mapping(self):
        assert KNOWN_COIN_IDS["BTC"] == "bitcoin"
        assert KNOWN_COIN_IDS["ETH"] == "ethereum"
        assert KNOWN_COIN_IDS["AVAX"] == "avalanche-2"


class TestSymbolResolution:
    def test_known_symbol_resolved_without_api(self, client):
        with patch.object(client._client, "request") as mock_request:
            assert client._resolve_coin_id("btc") == "bitcoin"
        mock_request.assert_not_called()

    def test_unknown_symbol_picks_best_rank(self, client):
        search = {
            "coins": [
                {"id": "another-token", "symbol": "NEWCOIN", "market_cap_rank": 200},
                {"id": "some-token", "symbol": "NEWCOIN", "market_cap_rank": 50},
                {"id": "unrelated", "symbol": "OTHER", "market_cap_rank": 1},
            ]
        }
        with patch.object(client._client, "request", return_value=_response(200, search)):
            assert client._resolve_coin_id("NEWCOIN") == "some-token"

    def test_fallback_to_first_exact_match_without_rank(self, client):
        search = {
            "coins": [
                {"id": "first", "symbol": "NEWCOIN", "market_cap_rank": None},
                {"id": "second", "symbol": "NEWCOIN", "market_cap_rank": None},
            ]
        }
        with patch.object(client._client, "request", return_value=_response(200, search)):
            assert client._resolve_coin_id("NEWCOIN") == "first"

    def test_resolution_cached(self, client):
        search = {"coins": [{"id": "some-token", "symbol": "NEWCOIN", "market_cap_rank": 5}]}
        with patch.object(client._client, "request", return_value=_response(200, search)) as mock_request:
            client._resolve_coin_id("NEWCOIN")
            client._resolve_coin_id("newcoin")
        assert mock_request.call_count == 1

    def test_no_match_returns_none(self, client):
        with patch.object(client._client, "request", return_value=_response(200, {"coins": []})):
            assert client._resolve_coin_id("NOPE") is None


class TestGetPriceHistory:
    def test_intraday_points_folded_into_daily_bars(self, client):
        chart = {
            "prices": [
                [_ts_ms(2024, 1, 15, 0), 42000.0],
                [_ts_ms(2024, 1, 15, 6), 43000.0],
                [_ts_ms(2024, 1, 15, 12), 41500.0],
                [_ts_ms(2024, 1, 15, 23), 42500.0],
                [_ts_ms(2024, 1, 16, 1), 42600.0],
            ],
            "total_volumes": [[_ts_ms(2024, 1, 15, 23), 123456.7]],
        }
        handler = _routes(market_chart=chart)
        with patch.object(client._client, "request", side_effect=handler):
            result = client.get_price_history(["BTC"], date(2024, 1, 15), date(2024, 1, 16))

        first, second = result["BTC"]
        assert first.price_date == date(2024, 1, 15)
        assert first.open_price == Decimal("42000.0")
        assert first.high_price == Decimal("43000.0")
        assert first.low_price == Decimal("41500.0")
        assert first.close_price == Decimal("42500.0")
        assert first.volume == 123456
        assert first.source == "coingecko"
        assert second.close_price == Decimal("42600.0")
        assert handler.calls[0][0] == "/coins/bitcoin/market_chart/range"
        assert handler.calls[0][1]["vs_currency"] == "usd"

    def test_filters_to_requested_range(self, client):
        chart = {"prices": [[_ts_ms(2024, 1, 14), 1.0], [_ts_ms(2024, 1, 15), 2.0]]}
        with patch.object(client._client, "request", side_effect=_routes(market_chart=chart)):
            result = client.get_price_history(["ETH"], date(2024, 1, 15), date(2024, 1, 15))

        assert [b.price_date for b in result["ETH"]] == [date(2024, 1, 15)]

    def test_unknown_symbol_returns_empty_list(self, client):
        with patch.object(client._client, "request", side_effect=_routes(search={"coins": []})):
            result = client.get_price_history(["NOPE"], date(2024, 1, 15), date(2024, 1, 15))
        assert result == {"NOPE": []}

    def test_empty_symbols_returns_empty_dict(self, client):
        assert client.get_price_history([], date(2024, 1, 15), date(2024, 1, 15)) == {}


class TestErrors:
    def test_auth_error(self, client):
        with patch.object(client._client, "request", return_value=_response(401)):
            with pytest.raises(ProviderAuthError):
                client.get_price_history(["BTC"], date(2024, 1, 15), date(2024, 1, 15))

    def test_rate_limited_is_retriable(self, client):
        with patch.object(client._client, "request", return_value=_response(429)):
            with pytest.raises(ProviderAPIError) as exc_info:
                client.get_quote("BTC")
        assert exc_info.value.status_code == 429
        assert exc_info.value.retriable

    def test_client_error_not_retriable(self, client):
        with patch.object(client._client, "request", return_value=_response(404)):
            with pytest.raises(ProviderAPIError) as exc_info:
                client.get_quote("BTC")
        assert not exc_info.value.retriable

    def test_transport_error(self, client):
        with patch.object(client._client, "request", side_effect=httpx.ConnectError("refused")):
            with pytest.raises(ProviderConnectionError):
                client.get_quote("BTC")


class TestGetQuote:
    def test_simple_price(self, client):
        with patch.object(client._client, "request", side_effect=_routes(simple={"bitcoin": {"usd": 64123.5}})):
            quote = client.get_quote("BTC")

        assert quote.last_price == Decimal("64123.5")
        assert quote.source == "coingecko"

    def test_missing_price(self, client):
        with patch.object(client._client, "request", side_effect=_routes(simple={})):
            with pytest.raises(ProviderDataError):
                client.get_quote("BTC")

    def test_unknown_symbol(self, client):
        with patch.object(client._client, "request", side_effect=_routes(search={"coins": []})):
            with pytest.raises(ProviderDataError):
                client.get_quote("NOPE")


class TestApiKey:
    def test_api_key_in_headers(self):
        client = CoinGeckoClient(api_key="test-api-key")
        assert client._client.headers["x-cg-demo-api-key"] == "test-api-key"
        client.close()

    def test_no_api_key_no_header(self):
        client = CoinGeckoClient()
        assert "x-cg-demo-api-key" not in client._client.headers
        client.close()


def test_provider_name(client):
    assert client.provider_name == "coingecko"
