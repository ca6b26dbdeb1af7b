"""Bithumb fetcher.

Endpoint: https://api.bithumb.com/public/orderbook/{BASE}_{QUOTE}
Rate Limit: Moderate (no key required)

Only KRW pairs are listed. The quote is the order book midpoint.
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
class BithumbFetcher(BaseFetcher):
    """Fetcher for the Bithumb public order book."""

    name = "bithumb"
    BASE_URL = "https://api.bithumb.com/public"

    # Bithumb reports success as this status string
    STATUS_OK = "0000"

    async def fetch(self, base: str, quote: str) -> RawQuote:
        """Fetch the order book midpoint from Bithumb.

        :param base: Base currency (e.g., "luna").
        :param quote: Quote currency, must be "krw".
        :returns: Raw quote with the book midpoint.
        :raises SourceError: On HTTP failure, API error or unexpected payload.
        """
        symbol = f"{base.upper()}_{quote.upper()}"
        response = await self._get(f"{self.BASE_URL}/orderbook/{symbol}")
        payload = self._json(response)

        if not isinstance(payload, dict):
            raise self._malformed(f"Unexpected payload: {payload}")
        if payload.get("status") != self.STATUS_OK:
            raise SourceError(
                SourceErrorKind.UNAVAILABLE,
                f"[bithumb] status={payload.get('status')} for {symbol}",
            )

        try:
            data = payload["data"]
            midpoint = orderbook_midpoint(
                (level["price"] for level in data["asks"]),
                (level["price"] for level in data["bids"]),
            )
        except (KeyError, TypeError) as e:
            raise self._malformed(f"Failed to parse order book for {symbol}: {e}") from e

        return self._raw(base, quote, midpoint, self._timestamp(data.get("timestamp")))

    def supports_pair(self, base: str, quote: str) -> bool:
        """Bithumb only lists KRW markets."""
        return quote.lower() == "krw"
