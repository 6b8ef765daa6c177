"""Unit tests for YahooFinanceClient (mocked yfinance)."""

from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import patch

import pandas as pd
import pytest

from integrations.exceptions import ProviderConnectionError, ProviderDataError
from integrations.yahoo_finance_client import YahooFinanceClient


@pytest.fixture
def client():
    return YahooFinanceClient()


def _make_df(data: dict, dates: list[str]) -> pd.DataFrame:
    """Build a DataFrame with DatetimeIndex, mimicking yfinance output."""
    index = pd.DatetimeIndex(dates)
    return pd.DataFrame(data, index=index)


class TestSingleSymbolSingleDate:
    def test_returns_correct_price_result(self, client):
        df = _make_df({"Close": [150.25]}, ["2024-01-15"])
        with patch("yfinance.download", return_value=df) as mock_dl:
            result = client.get_price_history(["AAPL"], date(2024, 1, 15), date(2024, 1, 15))

        assert len(result["AAPL"]) == 1
        pr = result["AAPL"][0]
        assert pr.symbol == "AAPL"
        assert pr.price_date == date(2024, 1, 15)
        assert pr.close_price == Decimal("150.25")
        assert pr.source == "yahoo"
        mock_dl.assert_called_once()

    def test_lookback_window_and_exclusive_end(self, client):
        df = _make_df({"Close": [150.25]}, ["2024-01-15"])
        with patch("yfinance.download", return_value=df) as mock_dl:
            client.get_price_history(["AAPL"], date(2024, 1, 15), date(2024, 1, 15))

        kwargs = mock_dl.call_args.kwargs
        assert kwargs["start"] == "2024-01-05"
        assert kwargs["end"] == "2024-01-16"

    def test_unknown_symbol_returns_empty_list(self, client):
        with patch("yfinance.download", return_value=pd.DataFrame()):
            result = client.get_price_history(["FAKE"], date(2024, 1, 15), date(2024, 1, 15))

        assert result["FAKE"] == []

    def test_weekend_date_returns_prior_friday(self, client):
        df = _make_df({"Close": [148.0, 149.0, 150.0]}, ["2024-01-10", "2024-01-11", "2024-01-12"])
        with patch("yfinance.download", return_value=df):
            result = client.get_price_history(["AAPL"], date(2024, 1, 13), date(2024, 1, 13))

        assert len(result["AAPL"]) == 1
        assert result["AAPL"][0].price_date == date(2024, 1, 12)


class TestOHLCV:
    def test_full_bar(self, client):
        df = _make_df(
            {
                "Open": [149.0],
                "High": [151.5],
                "Low": [148.25],
                "Close": [150.0],
                "Volume": [1200000],
            },
            ["2024-01-15"],
        )
        with patch("yfinance.download", return_value=df):
            bar = client.get_price_history(["AAPL"], date(2024, 1, 15), date(2024, 1, 15))["AAPL"][0]

        assert bar.open_price == Decimal("149.0")
        assert bar.high_price == Decimal("151.5")
        assert bar.low_price == Decimal("148.25")
        assert bar.volume == 1200000

    def test_nan_close_skipped(self, client):
        df = _make_df({"Close": [150.0, float("nan")]}, ["2024-01-15", "2024-01-16"])
        with patch("yfinance.download", return_value=df):
            result = client.get_price_history(["AAPL"], date(2024, 1, 15), date(2024, 1, 16))

        assert [b.price_date for b in result["AAPL"]] == [date(2024, 1, 15)]


class TestMultiSymbol:
    def test_multiindex_columns(self, client):
        cols = pd.MultiIndex.from_tuples([("Close", "AAPL"), ("Close", "MSFT")])
        data = [[150.0, 380.0], [151.0, 381.0], [152.0, 382.0]]
        index = pd.DatetimeIndex(["2024-01-15", "2024-01-16", "2024-01-17"])
        df = pd.DataFrame(data, index=index, columns=cols)

        with patch("yfinance.download", return_value=df):
            result = client.get_price_history(["AAPL", "MSFT"], date(2024, 1, 15), date(2024, 1, 17))

        assert len(result["AAPL"]) == 3
        assert len(result["MSFT"]) == 3
        assert result["MSFT"][0].close_price == Decimal("380.0")
        assert result["AAPL"][2].price_date == date(2024, 1, 17)

    def test_symbol_missing_from_frame(self, client):
        cols = pd.MultiIndex.from_tuples([("Close", "AAPL")])
        df = pd.DataFrame([[150.0]], index=pd.DatetimeIndex(["2024-01-15"]), columns=cols)
        with patch("yfinance.download", return_value=df):
            result = client.get_price_history(["AAPL", "FAKE"], date(2024, 1, 15), date(2024, 1, 15))

        assert len(result["AAPL"]) == 1
        assert result["FAKE"] == []


class TestErrorHandling:
    def test_download_exception_is_retriable_connection_error(self, client):
        with patch("yfinance.download", side_effect=Exception("network error")):
            with pytest.raises(ProviderConnectionError) as exc_info:
                client.get_price_history(["AAPL"], date(2024, 1, 15), date(2024, 1, 15))

        assert exc_info.value.retriable
        assert exc_info.value.provider_name == "yahoo"

    def test_empty_symbols_returns_empty_dict(self, client):
        assert client.get_price_history([], date(2024, 1, 15), date(2024, 1, 15)) == {}


class TestQuote:
    def test_latest_close(self, client):
        yesterday = date.today() - timedelta(days=1)
        df = _make_df({"Close": [99.5], "Volume": [10]}, [yesterday.isoformat()])
        with patch("yfinance.download", return_value=df):
            quote = client.get_quote("AAPL")

        assert quote.last_price == Decimal("99.5")
        assert quote.quote_date == yesterday
        assert quote.source == "yahoo"
        assert quote.volume == 10

    def test_no_data_raises(self, client):
        with patch("yfinance.download", return_value=pd.DataFrame()):
            with pytest.raises(ProviderDataError):
                client.get_quote("FAKE")


class TestDecimalPrecision:
    def test_preserves_precision(self, client):
        df = _make_df({"Close": [150.123456]}, ["2024-01-15"])
        with patch("yfinance.download", return_value=df):
            result = client.get_price_history(["AAPL"], date(2024, 1, 15), date(2024, 1, 15))

        assert result["AAPL"][0].close_price == Decimal("150.123456")


def test_provider_name(client):
    assert client.provider_name == "yahoo"
