"""QuoteNormalizer: Canonical quotes from raw source answers.

Fetchers report prices in whatever shape the exchange uses (strings,
floats, Decimals, second or millisecond timestamps). The normalizer turns
each answer into a Quote with a positive Decimal rate and a timestamp in
unix seconds, or rejects it as malformed.

.. code-block:: python

    >>> raw = RawQuote(source="coinone", base="luna", quote="krw", price="9420.5")
    >>> quote = normalize_quote(raw, TradingPair("luna", "krw"), now=1700000000.0)
    >>> quote.rate
    Decimal('9420.5')
    >>> quote.observed_at
    1700000000.0
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from .fetchers.base import RawQuote, SourceError, SourceErrorKind
from .TradingPair import TradingPair

# Timestamps above this are taken to be milliseconds (year ~2286 in seconds)
MILLISECONDS_THRESHOLD = 10_000_000_000


@dataclass(frozen=True)
class Quote:
    """One source's observation of one pair at one instant.

    :ivar pair: Trading pair observed.
    :ivar rate: Positive price of one base unit in quote units.
    :ivar source: Name of the source that produced it.
    :ivar observed_at: Observation time in unix seconds.
    """

    pair: TradingPair
    rate: Decimal
    source: str
    observed_at: float


def _to_decimal(value: object) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps floats at their shortest repr instead of binary expansion
    return Decimal(str(value).strip())


def normalize_quote(
    raw: RawQuote, pair: TradingPair, now: float | None = None
) -> Quote:
    """Convert a raw source answer into a Quote.

    :param raw: The fetcher's answer.
    :param pair: The pair the source was asked for.
    :param now: Current unix time, used when the source reports no timestamp.
    :returns: Canonical quote.
    :raises SourceError: MALFORMED if the price is not a positive finite
        number or the answer is for a different pair.
    """
    if (raw.base.lower(), raw.quote.lower()) != pair.as_tuple():
        raise SourceError(
            SourceErrorKind.MALFORMED,
            f"[{raw.source}] Answered {raw.base}/{raw.quote}, expected {pair}",
        )

    try:
        rate = _to_decimal(raw.price)
    except (InvalidOperation, ValueError) as e:
        raise SourceError(
            SourceErrorKind.MALFORMED,
            f"[{raw.source}] Unparseable price {raw.price!r} for {pair}",
        ) from e

    if not rate.is_finite() or rate <= 0:
        raise SourceError(
            SourceErrorKind.MALFORMED,
            f"[{raw.source}] Non-positive price {raw.price!r} for {pair}",
        )

    observed_at = raw.timestamp
    if observed_at is None or observed_at <= 0:
        observed_at = time.time() if now is None else now
    elif observed_at > MILLISECONDS_THRESHOLD:
        observed_at = observed_at / 1000.0

    return Quote(pair=pair, rate=rate, source=raw.source, observed_at=float(observed_at))
