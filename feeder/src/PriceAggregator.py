"""PriceAggregator: Exchange rate per denom from a set of source quotes.

Algorithm:
    1. Fail with NO_QUOTES if no source answered
    2. Drop quotes older than max_quote_age
    3. Calculate the median across the fresh quotes
    4. Exclude outliers (rates deviating > max_deviation_percent from that median)
    5. Fail with NO_RELIABLE_DATA unless the survivors are a strict majority
       of the fresh quotes and at least min_sources
    6. Combine the survivors with the configured statistic (mean or median)

Rates are Decimals and survivors are combined in sorted order, so the same
quote set always produces the same rate regardless of arrival order.

.. code-block:: python

    >>> aggregator = PriceAggregator(max_deviation_percent=5.0)
    >>> result = aggregator.aggregate("uusd", quotes)   # 100.0, 100.1, 500.0
    >>> result.success
    True
    >>> result.rate.rate
    Decimal('100.050000000000000000')
    >>> result.metadata["dropped"]
    {'rogue': Decimal('500.0')}
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from decimal import Decimal, localcontext
from enum import Enum
from statistics import median as _median
from typing import Iterable, Sequence, TypedDict

from .QuoteNormalizer import Quote

# On-chain decimals have 18 fractional digits
RATE_PRECISION = Decimal(10) ** -18

STATISTICS = ("mean", "median")


class AggregationError(str, Enum):
    """Why no exchange rate was produced for a denom this cycle."""

    NO_QUOTES = "no_quotes"
    NO_RELIABLE_DATA = "no_reliable_data"


@dataclass(frozen=True)
class ExchangeRate:
    """Aggregated rate for one denom for one cycle.

    :ivar denom: Chain denomination (e.g., "ukrw").
    :ivar rate: Positive rate with 18 fractional digits.
    :ivar cycle_time: Unix time of the aggregation cycle.
    """

    denom: str
    rate: Decimal
    cycle_time: float

    def __post_init__(self) -> None:
        if not self.rate > 0:
            raise ValueError(f"Exchange rate for {self.denom} must be positive: {self.rate}")


class AggregationErrorInfo(TypedDict, total=False):
    """Error information when aggregation fails.

    :ivar error: Error type identifier.
    :ivar available: Number of fresh quotes available.
    :ivar dropped: Sources dropped as outliers.
    :ivar stale: Sources dropped as stale.
    """

    error: AggregationError
    available: int
    dropped: dict[str, Decimal]
    stale: list[str]


class AggregationMetadata(TypedDict, total=False):
    """Metadata about a successful aggregation.

    :ivar sources: Sources used in final calculation.
    :ivar dropped: Sources dropped as outliers.
    :ivar stale: Sources dropped as stale.
    :ivar count: Number of sources used.
    :ivar initial_median: Median before outlier filtering.
    :ivar legs: Leg rates multiplied into a cross rate.
    """

    sources: list[str]
    dropped: dict[str, Decimal]
    stale: list[str]
    count: int
    initial_median: Decimal
    legs: dict[str, Decimal]


@dataclass
class AggregationResult:
    """Result of aggregation.

    :ivar rate: Aggregated exchange rate, or None if aggregation failed.
    :ivar metadata: Additional information about the aggregation.
    """

    rate: ExchangeRate | None
    metadata: AggregationMetadata | AggregationErrorInfo

    @property
    def success(self) -> bool:
        """Check if aggregation was successful."""
        return self.rate is not None

    @property
    def error(self) -> AggregationError | None:
        """Get error type if aggregation failed."""
        if self.rate is None:
            return self.metadata.get("error")
        return None


class PriceAggregator:
    """Combines quotes from several sources into one exchange rate.

    :ivar max_deviation_percent: Max allowed deviation from the median.
    :ivar max_quote_age: Max age of a quote in seconds.
    :ivar statistic: "mean" or "median" of the surviving rates.
    :ivar min_sources: Minimum surviving sources for a valid rate.
    """

    def __init__(
        self,
        max_deviation_percent: float = 5.0,
        max_quote_age: float = 60.0,
        statistic: str = "mean",
        min_sources: int = 1,
    ) -> None:
        """Initialize the aggregator.

        :param max_deviation_percent: Maximum allowed deviation from median before
            a quote is considered an outlier (default 5%).
        :param max_quote_age: Quotes older than this many seconds are discarded.
        :param statistic: Combination rule for surviving rates.
        :param min_sources: Minimum number of surviving quotes.
        :raises ValueError: If parameters are invalid.
        """
        if min_sources < 1:
            raise ValueError("min_sources must be at least 1")
        if max_deviation_percent <= 0:
            raise ValueError("max_deviation_percent must be positive")
        if max_quote_age <= 0:
            raise ValueError("max_quote_age must be positive")
        if statistic not in STATISTICS:
            raise ValueError(f"statistic must be one of {STATISTICS}")

        self.max_deviation_percent = Decimal(str(max_deviation_percent))
        self.max_quote_age = max_quote_age
        self.statistic = statistic
        self.min_sources = min_sources

    def aggregate(
        self,
        denom: str,
        quotes: Iterable[Quote],
        *,
        now: float | None = None,
    ) -> AggregationResult:
        """Aggregate quotes for one denom into an exchange rate.

        :param denom: Denom the quotes price.
        :param quotes: Quotes gathered this cycle; may be empty.
        :param now: Current unix time (default: time.time()).
        :returns: AggregationResult with the rate, or None and error info.
        """
        now = time.time() if now is None else now
        quotes = list(quotes)

        if not quotes:
            return AggregationResult(
                rate=None,
                metadata={"error": AggregationError.NO_QUOTES, "available": 0},
            )

        # Step 1: Staleness filter
        fresh = [q for q in quotes if now - q.observed_at <= self.max_quote_age]
        stale = sorted(q.source for q in quotes if now - q.observed_at > self.max_quote_age)

        if not fresh:
            return AggregationResult(
                rate=None,
                metadata={
                    "error": AggregationError.NO_RELIABLE_DATA,
                    "available": 0,
                    "stale": stale,
                },
            )

        with localcontext() as ctx:
            ctx.prec = 50

            # Step 2: Initial median
            initial_median = _median(sorted(q.rate for q in fresh))

            # Step 3: Filter outliers
            survivors: list[Quote] = []
            dropped: dict[str, Decimal] = {}
            for quote in fresh:
                deviation = abs(quote.rate - initial_median) / initial_median * 100
                if deviation <= self.max_deviation_percent:
                    survivors.append(quote)
                else:
                    dropped[quote.source] = quote.rate

            # Step 4: Require a majority cluster
            if len(survivors) * 2 <= len(fresh) or len(survivors) < self.min_sources:
                return AggregationResult(
                    rate=None,
                    metadata={
                        "error": AggregationError.NO_RELIABLE_DATA,
                        "available": len(fresh),
                        "dropped": dropped,
                        "stale": stale,
                    },
                )

            # Step 5: Combine
            rates = sorted(q.rate for q in survivors)
            if self.statistic == "median":
                combined = _median(rates)
            else:
                combined = sum(rates, Decimal(0)) / len(rates)
            combined = combined.quantize(RATE_PRECISION)

        # Rates below the on-chain precision round to zero
        if combined <= 0:
            return AggregationResult(
                rate=None,
                metadata={
                    "error": AggregationError.NO_RELIABLE_DATA,
                    "available": len(fresh),
                    "dropped": dropped,
                    "stale": stale,
                },
            )

        return AggregationResult(
            rate=ExchangeRate(denom=denom, rate=combined, cycle_time=now),
            metadata={
                "sources": sorted(q.source for q in survivors),
                "dropped": dropped,
                "stale": stale,
                "count": len(survivors),
                "initial_median": initial_median,
            },
        )

    def cross_rate(
        self,
        denom: str,
        legs: Sequence[AggregationResult],
        *,
        now: float | None = None,
    ) -> AggregationResult:
        """Multiply aggregated leg rates into one denom rate.

        ``luna/krw`` and ``krw/sdr`` legs give the ``luna/sdr`` rate. Each
        leg is aggregated on its own first, so outlier rejection happens per
        leg and the product only ever combines accepted rates.

        :param denom: Denom the product prices.
        :param legs: Aggregation results of the legs, in chain order.
        :param now: Current unix time (default: time.time()).
        :returns: AggregationResult with the product, or the first failed
            leg's error.
        """
        now = time.time() if now is None else now
        if not legs:
            return AggregationResult(
                rate=None,
                metadata={"error": AggregationError.NO_QUOTES, "available": 0},
            )
        for leg in legs:
            if not leg.success:
                return AggregationResult(rate=None, metadata=dict(leg.metadata))

        with localcontext() as ctx:
            ctx.prec = 50
            combined = Decimal(1)
            for leg in legs:
                combined *= leg.rate.rate
            combined = combined.quantize(RATE_PRECISION)

        if combined <= 0:
            return AggregationResult(
                rate=None,
                metadata={"error": AggregationError.NO_RELIABLE_DATA, "available": 0},
            )

        dropped: dict[str, Decimal] = {}
        stale: set[str] = set()
        for leg in legs:
            dropped.update(leg.metadata.get("dropped", {}))
            stale.update(leg.metadata.get("stale", []))

        return AggregationResult(
            rate=ExchangeRate(denom=denom, rate=combined, cycle_time=now),
            metadata={
                "sources": sorted({s for leg in legs for s in leg.metadata["sources"]}),
                "dropped": dropped,
                "stale": sorted(stale),
                "count": min(leg.metadata["count"] for leg in legs),
                "legs": {leg.rate.denom: leg.rate.rate for leg in legs},
            },
        )
