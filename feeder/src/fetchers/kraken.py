"""Kraken fetcher.

Endpoint: https://api.kraken.com/0/public/Ticker?pair={BASE}{QUOTE}
Rate Limit: High (no key required)
"""

import logging

from .base import BaseFetcher, RawQuote, SourceError, SourceErrorKind, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class KrakenFetcher(BaseFetcher):
    """Fetcher for Kraken public API.

    No API key required.
    """

    name = "kraken"
    BASE_URL = "https://api.kraken.com/0/public"

    # Kraken uses non-standard ticker symbols
    SYMBOL_MAP = {
        "btc": "XBT",
    }

    async def fetch(self, base: str, quote: str) -> RawQuote:
        """Fetch the last trade price from Kraken.

        :param base: Base currency (e.g., "btc", "luna").
        :param quote: Quote currency (e.g., "usd", "eur").
        :returns: Raw quote with the last closed trade price.
        :raises SourceError: On HTTP failure, API error or unexpected payload.
        """
        kraken_base = self.SYMBOL_MAP.get(base.lower(), base.upper())
        pair = f"{kraken_base}{quote.upper()}"

        response = await self._get(f"{self.BASE_URL}/Ticker", params={"pair": pair})
        data = self._json(response)

        errors = data.get("error") if isinstance(data, dict) else None
        if errors:
            if any("Rate limit" in str(e) for e in errors):
                raise SourceError(
                    SourceErrorKind.RATE_LIMITED, f"[kraken] {errors}"
                )
            raise SourceError(
                SourceErrorKind.UNAVAILABLE, f"[kraken] API error for {pair}: {errors}"
            )

        result = data.get("result") if isinstance(data, dict) else None
        if not result:
            raise self._malformed(f"No result for {pair}")

        # Result keys vary (XXBTZUSD vs XBTUSD); one pair was requested
        pair_data = list(result.values())[0]
        try:
            # 'c' is the last trade closed array: [price, lot volume]
            price = pair_data["c"][0]
        except (KeyError, IndexError, TypeError) as e:
            raise self._malformed(f"Failed to parse response for {pair}: {e}") from e

        return self._raw(base, quote, price)
