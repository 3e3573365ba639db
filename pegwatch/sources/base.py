"""Price source interfaces for Pegwatch."""

from abc import ABC, abstractmethod
from typing import Any

import requests

from pegwatch.errors import SourceUnavailable
from pegwatch.models import PriceSample


DEFAULT_TIMEOUT = 10.0


class PriceSource(ABC):
    """Anything that can quote a current price for a symbol.

    get_price uses the default (primary) source; get_price_from_source
    is scoped to one named venue.
    """

    @abstractmethod
    def get_price(self, symbol: str) -> PriceSample:
        """Get the current price from the primary source.

        Raises:
            SourceUnavailable: If the price cannot be fetched.
        """
        pass

    @abstractmethod
    def get_price_from_source(self, symbol: str, source: str) -> PriceSample:
        """Get the current price from one named venue.

        Raises:
            SourceUnavailable: If the venue is unknown or the fetch fails.
        """
        pass


class VenueClient(ABC):
    """HTTP client for a single price venue."""

    name: str = ""

    def __init__(self, session: requests.Session | None = None, timeout: float = DEFAULT_TIMEOUT):
        self._session = session or requests.Session()
        self._timeout = timeout

    @abstractmethod
    def fetch_price(self, symbol: str) -> PriceSample:
        pass

    def _get_json(self, url: str, **kwargs: Any) -> Any:
        """GET a URL and decode the JSON body.

        Raises:
            SourceUnavailable: On network errors, HTTP errors or bad JSON.
        """
        try:
            response = self._session.get(url, timeout=self._timeout, **kwargs)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            raise SourceUnavailable(f"{self.name}: {e}") from e
        except ValueError as e:
            raise SourceUnavailable(f"{self.name}: invalid JSON response") from e

    def _sample(self, symbol: str, raw_price: Any) -> PriceSample:
        try:
            price = float(raw_price)
        except (TypeError, ValueError) as e:
            raise SourceUnavailable(f"{self.name}: bad price {raw_price!r} for {symbol}") from e
        if price <= 0:
            raise SourceUnavailable(f"{self.name}: non-positive price for {symbol}")
        return PriceSample(symbol=symbol, source=self.name, price=price)
