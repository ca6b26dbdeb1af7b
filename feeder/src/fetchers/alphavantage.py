"""Alpha Vantage FX fetcher.

Endpoint: https://www.alphavantage.co/query?function=CURRENCY_EXCHANGE_RATE
Rate Limit: 5 calls/min on the free tier (API key required)
"""

import logging
from datetime import datetime, timezone

from .base import BaseFetcher, RawQuote, SourceError, SourceErrorKind, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class AlphaVantageFetcher(BaseFetcher):
    """Fetcher for Alpha Vantage realtime currency exchange rates."""

    name = "alphavantage"
    BASE_URL = "https://www.alphavantage.co/query"
    REQUIRES_API_KEY = True

    async def fetch(self, base: str, quote: str) -> RawQuote:
        """Fetch the realtime exchange rate.

        :param base: From currency (e.g., "krw").
        :param quote: To currency (e.g., "sgd").
        :returns: Raw quote with the exchange rate.
        :raises SourceError: RATE_LIMITED when the API answers with a
            throttling note; MALFORMED on unexpected payloads.
        """
        params = {
            "function": "CURRENCY_EXCHANGE_RATE",
            "from_currency": base.upper(),
            "to_currency": quote.upper(),
            "apikey": self.api_key,
        }
        response = await self._get(self.BASE_URL, params=params)
        data = self._json(response)

        if not isinstance(data, dict):
            raise self._malformed(f"Unexpected payload: {data}")
        # Throttled responses are HTTP 200 with a "Note" or "Information" field
        for field in ("Note", "Information"):
            if field in data:
                raise SourceError(
                    SourceErrorKind.RATE_LIMITED, f"[alphavantage] {data[field]}"
                )
        if "Error Message" in data:
            raise SourceError(
                SourceErrorKind.UNAVAILABLE, f"[alphavantage] {data['Error Message']}"
            )

        try:
            body = data["Realtime Currency Exchange Rate"]
            rate = body["5. Exchange Rate"]
        except (KeyError, TypeError) as e:
            raise self._malformed(f"Failed to parse response: {e}") from e

        return self._raw(base, quote, rate, self._parse_refreshed(body))

    @staticmethod
    def _parse_refreshed(body: dict) -> float | None:
        # "6. Last Refreshed" is naive; "7. Time Zone" is UTC in practice
        value = body.get("6. Last Refreshed")
        if not value or body.get("7. Time Zone", "UTC") != "UTC":
            return None
        try:
            parsed = datetime.strptime(value, "%Y-%m-%d %H:%M:%S")
        except ValueError:
            return None
        return parsed.replace(tzinfo=timezone.utc).timestamp()
