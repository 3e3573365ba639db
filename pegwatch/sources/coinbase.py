"""Coinbase spot price client."""

import requests

from pegwatch.errors import SourceUnavailable
from pegwatch.models import PriceSample
from pegwatch.sources.base import DEFAULT_TIMEOUT, VenueClient


class CoinbaseClient(VenueClient):
    """Quotes USD spot prices from Coinbase."""

    name = "coinbase"

    def __init__(
        self,
        base_url: str = "https://api.coinbase.com",
        session: requests.Session | None = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        super().__init__(session=session, timeout=timeout)
        self._base_url = base_url.rstrip("/")

    def fetch_price(self, symbol: str) -> PriceSample:
        pair = f"{symbol.upper()}-USD"
        data = self._get_json(f"{self._base_url}/v2/prices/{pair}/spot")
        try:
            raw = data["data"]["amount"]
        except (KeyError, TypeError) as e:
            raise SourceUnavailable(f"coinbase: no spot price for {pair}") from e
        return self._sample(symbol, raw)
