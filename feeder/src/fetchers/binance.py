"""Binance fetcher.

Endpoint: https://api.binance.com/api/v3/avgPrice?symbol={BASE}{QUOTE}
Rate Limit: High (no key required for public endpoints)

Binance lists USDT/BUSD stablecoin markets rather than fiat ones, so the
feeder configures pairs like ``luna/usdt`` for this source.
"""

import logging

from .base import BaseFetcher, RawQuote, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class BinanceFetcher(BaseFetcher):
    """Fetcher for the Binance spot API.

    Uses the rolling average price endpoint, which smooths single-trade
    spikes over the last few minutes.
    """

    name = "binance"
    BASE_URL = "https://api.binance.com/api/v3"

    async def fetch(self, base: str, quote: str) -> RawQuote:
        """Fetch the average price from Binance.

        :param base: Base currency (e.g., "luna").
        :param quote: Quote currency (e.g., "usdt", "busd").
        :returns: Raw quote with the average price.
        :raises SourceError: On HTTP failure or unexpected payload.
        """
        symbol = f"{base.upper()}{quote.upper()}"
        response = await self._get(f"{self.BASE_URL}/avgPrice", params={"symbol": symbol})
        data = self._json(response)

        if not isinstance(data, dict) or "price" not in data:
            raise self._malformed(f"No price for {symbol}: {data}")

        # closeTime is only present on newer API versions (milliseconds)
        return self._raw(base, quote, data["price"], self._timestamp(data.get("closeTime")))

    def supports_pair(self, base: str, quote: str) -> bool:
        """Binance has no fiat quote markets."""
        return quote.lower() not in ("usd", "krw", "eur", "sdr", "mnt")
