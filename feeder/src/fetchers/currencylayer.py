"""Currencylayer FX fetcher.

Endpoint: http://api.currencylayer.com/live?source={BASE}&currencies={QUOTE}
Rate Limit: Plan dependent (API key required)
"""

import logging

from .base import BaseFetcher, RawQuote, SourceError, SourceErrorKind, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class CurrencylayerFetcher(BaseFetcher):
    """Fetcher for Currencylayer live rates."""

    name = "currencylayer"
    BASE_URL = "http://api.currencylayer.com"
    REQUIRES_API_KEY = True

    # Currencylayer error codes for exhausted quota / too many requests
    RATE_LIMIT_CODES = (104, 106)

    async def fetch(self, base: str, quote: str) -> RawQuote:
        """Fetch the live rate.

        :param base: Source currency (e.g., "usd").
        :param quote: Target currency (e.g., "krw").
        :returns: Raw quote with the live rate.
        :raises SourceError: On HTTP failure, API error or unexpected payload.
        """
        params = {
            "access_key": self.api_key,
            "source": base.upper(),
            "currencies": quote.upper(),
        }
        response = await self._get(f"{self.BASE_URL}/live", params=params)
        data = self._json(response)

        if not isinstance(data, dict):
            raise self._malformed(f"Unexpected payload: {data}")
        if not data.get("success"):
            error = data.get("error") or {}
            kind = (
                SourceErrorKind.RATE_LIMITED
                if error.get("code") in self.RATE_LIMIT_CODES
                else SourceErrorKind.UNAVAILABLE
            )
            raise SourceError(kind, f"[currencylayer] {error.get('info', error)}")

        key = f"{base.upper()}{quote.upper()}"
        quotes = data.get("quotes") or {}
        if key not in quotes:
            raise self._malformed(f"No quote for {key}: {quotes}")

        return self._raw(base, quote, quotes[key], self._timestamp(data.get("timestamp")))
