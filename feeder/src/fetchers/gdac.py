"""GDAC fetcher.

Endpoint: https://partner.gdac.com/v0.4/public/orderbook?pair={BASE}/{QUOTE}
Rate Limit: Moderate (no key required)

Only KRW pairs are listed. The quote is the order book midpoint.
"""

import logging

from .base import BaseFetcher, RawQuote, orderbook_midpoint, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class GdacFetcher(BaseFetcher):
    """Fetcher for the GDAC public order book.

    Book levels are ``{"price": ..., "volume": ...}`` objects. Errors come
    back as non-2xx responses with a ``code`` such as ``__unavailable__``.
    """

    name = "gdac"
    BASE_URL = "https://partner.gdac.com/v0.4"

    async def fetch(self, base: str, quote: str) -> RawQuote:
        """Fetch the order book midpoint from GDAC.

        :param base: Base currency (e.g., "luna").
        :param quote: Quote currency, must be "krw".
        :returns: Raw quote with the book midpoint.
        :raises SourceError: On HTTP failure or unexpected payload.
        """
        symbol = f"{base.upper()}/{quote.upper()}"
        response = await self._get(
            f"{self.BASE_URL}/public/orderbook", params={"pair": symbol}
        )
        data = self._json(response)

        if not isinstance(data, dict):
            raise self._malformed(f"Unexpected payload: {data}")

        try:
            midpoint = orderbook_midpoint(
                (level["price"] for level in data["ask"]),
                (level["price"] for level in data["bid"]),
            )
        except (KeyError, TypeError) as e:
            raise self._malformed(f"Failed to parse order book for {symbol}: {e}") from e

        return self._raw(base, quote, midpoint)

    def supports_pair(self, base: str, quote: str) -> bool:
        """GDAC only lists KRW markets."""
        return quote.lower() == "krw"
