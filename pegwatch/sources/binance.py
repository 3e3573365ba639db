"""Binance spot ticker client."""

import requests

from pegwatch.errors import QuoteNotSupported, SourceUnavailable
from pegwatch.models import PriceSample
from pegwatch.sources.base import DEFAULT_TIMEOUT, VenueClient


class BinanceClient(VenueClient):
    """Quotes last prices from Binance's public ticker endpoint.

    Prices are quoted against ``quote_asset`` (USDT by default), so a
    symbol equal to the quote asset cannot be priced here.
    """

    name = "binance"

    def __init__(
        self,
        base_url: str = "https://api.binance.com",
        quote_asset: str = "USDT",
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        super().__init__(session=session, timeout=timeout)
        self._base_url = base_url.rstrip("/")
        self._quote_asset = quote_asset.upper()

    def fetch_price(self, symbol: str) -> PriceSample:
        base = symbol.upper()
        if base == self._quote_asset:
            raise QuoteNotSupported(f"binance: cannot quote {base} against itself")

        data = self._get_json(
            f"{self._base_url}/api/v3/ticker/price",
            params={"symbol": f"{base}{self._quote_asset}"},
        )
        if not isinstance(data, dict) or "price" not in data:
            raise SourceUnavailable(f"binance: no ticker for {base}{self._quote_asset}")
        return self._sample(symbol, data["price"])
