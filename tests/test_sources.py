"""Tests for the HTTP price clients and the router.

**Feature: pegwatch**
"""

from unittest.mock import MagicMock

import pytest
import requests
from hypothesis import given, settings
from hypothesis import strategies as st

from pegwatch.config import AppConfig, AssetCatalog
from pegwatch.errors import QuoteNotSupported, SourceUnavailable
from pegwatch.sources import BinanceClient, CoinbaseClient, CoinGeckoClient, PriceRouter


# ============================================================================
# Test Fixtures
# ============================================================================

def mock_session(payload=None, exc: Exception | None = None) -> MagicMock:
    """Create a mock requests.Session whose get() returns ``payload``."""
    session = MagicMock(spec=requests.Session)
    if exc is not None:
        session.get.side_effect = exc
        return session
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status.return_value = None
    session.get.return_value = response
    return session


# ============================================================================
# Venue clients
# ============================================================================

class TestCoinGeckoClient:
    def test_fetch_price(self):
        session = mock_session({"bitcoin": {"usd": 64000.5}})
        client = CoinGeckoClient(AssetCatalog(), api_key="demo", session=session, timeout=3)

        sample = client.fetch_price("btc")

        assert sample.symbol == "btc"
        assert sample.source == "coingecko"
        assert sample.price == 64000.5
        _, kwargs = session.get.call_args
        assert kwargs["params"] == {"ids": "bitcoin", "vs_currencies": "usd"}
        assert kwargs["headers"] == {"x-cg-demo-api-key": "demo"}
        assert kwargs["timeout"] == 3

    def test_unmapped_symbol(self):
        session = mock_session({})
        with pytest.raises(QuoteNotSupported):
            CoinGeckoClient(AssetCatalog(), session=session).fetch_price("NOPE")
        session.get.assert_not_called()

    def test_missing_price_in_body(self):
        client = CoinGeckoClient(AssetCatalog(), session=mock_session({"bitcoin": {}}))
        with pytest.raises(SourceUnavailable):
            client.fetch_price("BTC")


class TestBinanceClient:
    def test_fetch_price(self):
        session = mock_session({"symbol": "ETHUSDT", "price": "3100.12000000"})
        sample = BinanceClient(session=session).fetch_price("eth")

        assert sample.price == pytest.approx(3100.12)
        assert sample.source == "binance"
        _, kwargs = session.get.call_args
        assert kwargs["params"] == {"symbol": "ETHUSDT"}

    def test_quote_asset_cannot_be_priced(self):
        session = mock_session({})
        with pytest.raises(QuoteNotSupported):
            BinanceClient(session=session).fetch_price("USDT")
        session.get.assert_not_called()

    def test_error_body(self):
        client = BinanceClient(session=mock_session({"code": -1121, "msg": "Invalid symbol."}))
        with pytest.raises(SourceUnavailable):
            client.fetch_price("XYZ")


class TestCoinbaseClient:
    def test_fetch_price(self):
        session = mock_session({"data": {"base": "USDC", "currency": "USD", "amount": "0.9998"}})
        sample = CoinbaseClient(session=session).fetch_price("usdc")

        assert sample.price == pytest.approx(0.9998)
        assert session.get.call_args[0][0].endswith("/v2/prices/USDC-USD/spot")


class TestFailureConversion:
    """
    **Feature: pegwatch, Property 12: Source Failures Are Uniform**

    *For any* transport error or malformed price, clients raise
    SourceUnavailable and nothing else.
    """

    @pytest.mark.parametrize(
        "exc",
        [
            requests.ConnectionError("refused"),
            requests.Timeout("slow"),
            requests.HTTPError("503"),
        ],
    )
    def test_transport_errors(self, exc: Exception):
        client = CoinbaseClient(session=mock_session(exc=exc))
        with pytest.raises(SourceUnavailable):
            client.fetch_price("USDT")

    def test_invalid_json(self):
        session = mock_session()
        session.get.return_value.json.side_effect = ValueError("not json")
        with pytest.raises(SourceUnavailable):
            CoinbaseClient(session=session).fetch_price("USDT")

    @given(raw=st.one_of(
        st.floats(max_value=0, allow_nan=False),
        st.just("n/a"),
        st.none(),
    ))
    @settings(max_examples=30)
    def test_bad_prices(self, raw):
        client = BinanceClient(session=mock_session({"price": raw}))
        with pytest.raises(SourceUnavailable):
            client.fetch_price("BTC")


# ============================================================================
# Router
# ============================================================================

class TestPriceRouter:
    def test_routes_primary_and_venues(self):
        primary = MagicMock()
        binance = MagicMock()
        router = PriceRouter(primary, {"Binance": binance})

        router.get_price("BTC")
        router.get_price_from_source("USDT", "BINANCE")

        primary.fetch_price.assert_called_once_with("BTC")
        binance.fetch_price.assert_called_once_with("USDT")
        assert router.venue_names == ["binance"]

    def test_unknown_venue(self):
        router = PriceRouter(MagicMock(), {})
        with pytest.raises(QuoteNotSupported):
            router.get_price_from_source("USDT", "kraken")

    def test_from_config(self):
        router = PriceRouter.from_config(AppConfig())
        assert router.venue_names == ["binance", "coinbase"]
