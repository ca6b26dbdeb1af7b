"""Bitstamp fetcher.

Endpoint: https://www.bitstamp.net/api/v2/ticker/{base}{quote}/
Rate Limit: High (no key required)
"""

import logging

from .base import BaseFetcher, RawQuote, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class BitstampFetcher(BaseFetcher):
    """Fetcher for Bitstamp public API.

    Quotes the last trade price from the ticker.
    """

    name = "bitstamp"
    BASE_URL = "https://www.bitstamp.net/api/v2"

    async def fetch(self, base: str, quote: str) -> RawQuote:
        """Fetch price from Bitstamp.

        :param base: Base currency (e.g., "btc", "eth").
        :param quote: Quote currency (e.g., "usd", "eur").
        :returns: Raw quote with the last trade price.
        :raises SourceError: On HTTP failure or unexpected payload.
        """
        pair = f"{base.lower()}{quote.lower()}"
        response = await self._get(f"{self.BASE_URL}/ticker/{pair}/")
        data = self._json(response)

        if not isinstance(data, dict) or "last" not in data:
            raise self._malformed(f"No 'last' price for {pair}: {data}")

        return self._raw(base, quote, data["last"], self._timestamp(data.get("timestamp")))
