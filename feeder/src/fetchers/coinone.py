"""Coinone fetcher.

Endpoint: https://api.coinone.co.kr/orderbook?currency={BASE}
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
class CoinoneFetcher(BaseFetcher):
    """Fetcher for the Coinone public order book."""

    name = "coinone"
    BASE_URL = "https://api.coinone.co.kr"

    async def fetch(self, base: str, quote: str) -> RawQuote:
        """Fetch the order book midpoint from Coinone.

        :param base: Base currency (e.g., "luna").
        :param quote: Quote currency, must be "krw".
        :returns: Raw quote with the book midpoint.
        :raises SourceError: On HTTP failure, API error or unexpected payload.
        """
        response = await self._get(
            f"{self.BASE_URL}/orderbook", params={"currency": base.upper()}
        )
        data = self._json(response)

        if not isinstance(data, dict):
            raise self._malformed(f"Unexpected payload: {data}")
        if data.get("result") != "success":
            raise SourceError(
                SourceErrorKind.UNAVAILABLE,
                f"[coinone] errorCode={data.get('errorCode')} for {base}",
            )

        try:
            midpoint = orderbook_midpoint(
                (level["price"] for level in data["ask"]),
                (level["price"] for level in data["bid"]),
            )
        except (KeyError, TypeError) as e:
            raise self._malformed(f"Failed to parse order book for {base}: {e}") from e

        return self._raw(base, quote, midpoint, self._timestamp(data.get("timestamp")))

    def supports_pair(self, base: str, quote: str) -> bool:
        """Coinone only lists KRW markets."""
        return quote.lower() == "krw"
