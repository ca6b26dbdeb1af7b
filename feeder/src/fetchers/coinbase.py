"""Coinbase Exchange fetcher.

Endpoint: https://api.exchange.coinbase.com/products/{BASE}-{QUOTE}/ticker
Rate Limit: High (no key required)
"""

import logging
from datetime import datetime

from .base import BaseFetcher, RawQuote, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class CoinbaseFetcher(BaseFetcher):
    """Fetcher for Coinbase Exchange API.

    No API key required for public ticker endpoint.
    """

    name = "coinbase"
    BASE_URL = "https://api.exchange.coinbase.com"

    async def fetch(self, base: str, quote: str) -> RawQuote:
        """Fetch price from Coinbase Exchange.

        :param base: Base currency (e.g., "btc", "eth").
        :param quote: Quote currency (e.g., "usd").
        :returns: Raw quote with the last trade price.
        :raises SourceError: On HTTP failure or unexpected payload.
        """
        symbol = f"{base.upper()}-{quote.upper()}"
        response = await self._get(f"{self.BASE_URL}/products/{symbol}/ticker")
        data = self._json(response)

        if not isinstance(data, dict) or "price" not in data:
            raise self._malformed(f"No price in response for {symbol}: {data}")

        return self._raw(base, quote, data["price"], self._parse_time(data.get("time")))

    @staticmethod
    def _parse_time(value: str | None) -> float | None:
        if not value:
            return None
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            logger.debug(f"[coinbase] Unparseable ticker time {value!r}")
            return None
