"""Price source that routes between a primary source and named venues."""

from typing import Optional

from pegwatch.config import AppConfig
from pegwatch.errors import QuoteNotSupported
from pegwatch.models import PriceSample
from pegwatch.sources.base import PriceSource, VenueClient
from pegwatch.sources.binance import BinanceClient
from pegwatch.sources.coinbase import CoinbaseClient
from pegwatch.sources.coingecko import CoinGeckoClient


class PriceRouter(PriceSource):
    """PriceSource backed by one primary client and a set of venue clients."""

    def __init__(self, primary: VenueClient, venues: Optional[dict[str, VenueClient]] = None):
        self._primary = primary
        self._venues = {name.lower(): client for name, client in (venues or {}).items()}

    @property
    def venue_names(self) -> list[str]:
        return sorted(self._venues)

    def get_price(self, symbol: str) -> PriceSample:
        return self._primary.fetch_price(symbol)

    def get_price_from_source(self, symbol: str, source: str) -> PriceSample:
        client = self._venues.get(source.lower())
        if client is None:
            raise QuoteNotSupported(f"Unknown price source: {source}")
        return client.fetch_price(symbol)

    @classmethod
    def from_config(cls, config: AppConfig) -> "PriceRouter":
        """Build the standard CoinGecko + Binance + Coinbase router."""
        timeout = config.monitor.call_timeout
        primary = CoinGeckoClient(
            catalog=config.catalog,
            api_key=config.coingecko.api_key,
            base_url=config.coingecko.base_url,
            timeout=timeout,
        )
        venues: dict[str, VenueClient] = {
            "binance": BinanceClient(
                base_url=config.binance.base_url,
                quote_asset=config.binance.quote_asset,
                timeout=timeout,
            ),
            "coinbase": CoinbaseClient(
                base_url=config.coinbase.base_url,
                timeout=timeout,
            ),
        }
        return cls(primary=primary, venues=venues)
