"""CoinGecko price client (primary source)."""

from typing import Optional

import requests

from pegwatch.config import AssetCatalog
from pegwatch.errors import QuoteNotSupported, SourceUnavailable
from pegwatch.models import PriceSample
from pegwatch.sources.base import DEFAULT_TIMEOUT, VenueClient


class CoinGeckoClient(VenueClient):
    """Quotes USD prices from CoinGecko's /simple/price endpoint."""

    name = "coingecko"

    def __init__(
        self,
        catalog: AssetCatalog,
        api_key: Optional[str] = None,
        base_url: str = "https://api.coingecko.com/api/v3",
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        super().__init__(session=session, timeout=timeout)
        self._catalog = catalog
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")

    def fetch_price(self, symbol: str) -> PriceSample:
        coin_id = self._catalog.coingecko_id(symbol)
        if coin_id is None:
            raise QuoteNotSupported(f"coingecko: no id mapped for {symbol}")

        headers = {}
        if self._api_key:
            headers["x-cg-demo-api-key"] = self._api_key

        data = self._get_json(
            f"{self._base_url}/simple/price",
            params={"ids": coin_id, "vs_currencies": "usd"},
            headers=headers,
        )
        try:
            raw = data[coin_id]["usd"]
        except (KeyError, TypeError) as e:
            raise SourceUnavailable(f"coingecko: no USD price for {symbol}") from e
        return self._sample(symbol, raw)
