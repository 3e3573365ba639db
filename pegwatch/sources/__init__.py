"""Price sources for Pegwatch."""

from pegwatch.sources.base import PriceSource, VenueClient
from pegwatch.sources.binance import BinanceClient
from pegwatch.sources.coinbase import CoinbaseClient
from pegwatch.sources.coingecko import CoinGeckoClient
from pegwatch.sources.router import PriceRouter

__all__ = [
    "BinanceClient",
    "CoinGeckoClient",
    "CoinbaseClient",
    "PriceRouter",
    "PriceSource",
    "VenueClient",
]
