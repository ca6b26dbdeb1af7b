"""Dunamu forex fetcher.

Endpoint: https://quotation-api-cdn.dunamu.com/v1/forex/recent?codes=FRX.{BASE}{QUOTE}
Rate Limit: Moderate (no key required)

Dunamu publishes KRW fiat exchange rates, one side of the pair must be KRW.
"""

import logging

from .base import BaseFetcher, RawQuote, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class DunamuFetcher(BaseFetcher):
    """Fetcher for Dunamu's KRW forex quotes."""

    name = "dunamu"
    BASE_URL = "https://quotation-api-cdn.dunamu.com/v1"

    async def fetch(self, base: str, quote: str) -> RawQuote:
        """Fetch the base price for a KRW forex pair.

        :param base: Base currency (e.g., "krw").
        :param quote: Quote currency (e.g., "usd").
        :returns: Raw quote with the reference (base) price.
        :raises SourceError: On HTTP failure or unexpected payload.
        """
        code = f"FRX.{base.upper()}{quote.upper()}"
        response = await self._get(f"{self.BASE_URL}/forex/recent", params={"codes": code})
        data = self._json(response)

        if not isinstance(data, list) or not data:
            raise self._malformed(f"No quote for {code}: {data}")

        entry = data[0]
        if not isinstance(entry, dict) or "basePrice" not in entry:
            raise self._malformed(f"No basePrice for {code}: {entry}")

        # timestamp is milliseconds since epoch
        return self._raw(base, quote, entry["basePrice"], self._timestamp(entry.get("timestamp")))

    def supports_pair(self, base: str, quote: str) -> bool:
        """One side of the pair must be KRW."""
        return "krw" in (base.lower(), quote.lower())
