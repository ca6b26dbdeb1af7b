"""IMF SDR fetcher.

Endpoint: https://www.imf.org/external/np/fin/data/rms_five.aspx?tsvflag=Y
Rate Limit: Low (no key required; rates are published once per day)

The IMF publishes Special Drawing Right valuations as a tab-separated
spreadsheet export covering the last five business days. Rows have
irregular widths and section headers, so the fetcher scans for the first
row named after the requested currency. That row is in the "SDRs per
currency unit" section, which is the ``<currency>/sdr`` rate.
"""

import csv
import io
import logging
from decimal import Decimal, InvalidOperation

from .base import BaseFetcher, RawQuote, register_fetcher

logger = logging.getLogger(__name__)


@register_fetcher
class ImfSdrFetcher(BaseFetcher):
    """Fetcher for IMF SDR exchange rates.

    Only ``<currency>/sdr`` pairs are supported, for currencies listed in
    ``CURRENCY_NAMES``.
    """

    name = "imf_sdr"
    URL = "https://www.imf.org/external/np/fin/data/rms_five.aspx"

    # Row labels used in the IMF export
    CURRENCY_NAMES = {
        "aud": "Australian dollar",
        "cad": "Canadian dollar",
        "chf": "Swiss franc",
        "cny": "Chinese yuan",
        "eur": "Euro",
        "gbp": "U.K. pound",
        "jpy": "Japanese yen",
        "krw": "Korean won",
        "sgd": "Singapore dollar",
        "usd": "U.S. dollar",
    }

    async def fetch(self, base: str, quote: str) -> RawQuote:
        """Fetch the most recent SDR rate of a currency.

        :param base: Currency (e.g., "krw").
        :param quote: Must be "sdr".
        :returns: Raw quote with SDRs per unit of ``base``.
        :raises SourceError: MALFORMED if the currency row or a price in it
            is missing.
        """
        label = self.CURRENCY_NAMES.get(base.lower())
        if label is None or quote.lower() != "sdr":
            raise self._malformed(f"Unsupported pair {base}/{quote}")

        response = await self._get(self.URL, params={"tsvflag": "Y"})
        price = self._find_price(response.text, label)
        if price is None:
            raise self._malformed(f"No SDR rate for {label}")
        return self._raw(base, quote, price)

    @staticmethod
    def _find_price(text: str, label: str) -> Decimal | None:
        """Most recent price on the first row labelled ``label``.

        Columns run newest to oldest; days without a valuation are blank
        or "NA".
        """
        for row in csv.reader(io.StringIO(text), delimiter="\t"):
            if not row or row[0].strip() != label:
                continue
            for cell in row[1:6]:
                try:
                    return Decimal(cell.strip().replace(",", ""))
                except InvalidOperation:
                    continue
            return None
        return None

    def supports_pair(self, base: str, quote: str) -> bool:
        return quote.lower() == "sdr" and base.lower() in self.CURRENCY_NAMES
