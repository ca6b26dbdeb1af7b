"""GOPAX fetcher.

Endpoint: https://api.gopax.co.kr/trading-pairs/{BASE}-{QUOTE}/book
Rate Limit: Moderate (no key required)
"""

import logging

from .base import (
    BaseFetcher,
    RawQuote,
    SourceError,
    SourceErrorKind,
    orderbook_midpoint,
    register_fetcher,
)

logger = logging.getLogger(__name__)


@register_fetcher
class GopaxFetcher(BaseFetcher):
    """Fetcher for the GOPAX order book.

    Book levels are ``[id, price, volume]`` arrays.
    """

    name = "gopax"
    BASE_URL = "https://api.gopax.co.kr"

    async def fetch(self, base: str, quote: str) -> RawQuote:
        """Fetch the order book midpoint from GOPAX.

        :param base: Base currency (e.g., "luna").
        :param quote: Quote currency (e.g., "krw").
        :returns: Raw quote with the book midpoint.
        :raises SourceError: On HTTP failure, API error or unexpected payload.
        """
        symbol = f"{base.upper()}-{quote.upper()}"
        response = await self._get(f"{self.BASE_URL}/trading-pairs/{symbol}/book")
        data = self._json(response)

        if not isinstance(data, dict):
            raise self._malformed(f"Unexpected payload: {data}")
        if "errormsg" in data:
            raise SourceError(
                SourceErrorKind.UNAVAILABLE, f"[gopax] {data['errormsg']}"
            )

        try:
            midpoint = orderbook_midpoint(
                (level[1] for level in data["ask"]),
                (level[1] for level in data["bid"]),
            )
        except (KeyError, IndexError, TypeError) as e:
            raise self._malformed(f"Failed to parse order book for {symbol}: {e}") from e

        return self._raw(base, quote, midpoint)
