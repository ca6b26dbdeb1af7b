"""QuoteCollector: Concurrent quote fetching across price sources.

This module fans one fetch out per (denom, source) and gathers the
normalized quotes back per denom for the aggregator.

Architecture:
    - One task per (denom, source), all started concurrently
    - Each task bounded by fetch_timeout; a hung source is cancelled
    - Every failure is recorded as a SourceError against its source
    - Results are keyed, so completion order does not matter
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Mapping, Sequence

from .fetchers.base import SourceError, SourceErrorKind
from .QuoteNormalizer import Quote, normalize_quote
from .TradingPair import TradingPair

if TYPE_CHECKING:
    from .fetchers import BaseFetcher

logger = logging.getLogger(__name__)


@dataclass
class CollectionResult:
    """Quotes and failures of one collection cycle.

    :ivar quotes: Denom to list of normalized quotes.
    :ivar errors: Denom to {source: SourceError}.
    """

    quotes: dict[str, list[Quote]] = field(default_factory=dict)
    errors: dict[str, dict[str, SourceError]] = field(default_factory=dict)


class QuoteCollector:
    """Collects quotes for many denoms from many sources at once.

    :ivar fetchers: Dict mapping source names to fetcher instances.
    :ivar fetch_timeout: Per-source timeout in seconds.
    """

    def __init__(
        self,
        fetchers: dict[str, BaseFetcher],
        fetch_timeout: float = 5.0,
    ) -> None:
        """Initialize the collector.

        :param fetchers: Dict mapping source names to fetcher instances.
        :param fetch_timeout: Timeout for a single fetch (default: 5.0).
        :raises ValueError: If fetch_timeout is not positive.
        """
        if fetch_timeout <= 0:
            raise ValueError("fetch_timeout must be positive")
        self.fetchers = fetchers
        self.fetch_timeout = fetch_timeout

    async def collect(
        self,
        pairs: Mapping[str, tuple[TradingPair, Sequence[str]]],
        now: float | None = None,
    ) -> CollectionResult:
        """Fetch every configured (denom, source) combination.

        :param pairs: Denom to (pair, source names).
        :param now: Timestamp for quotes whose source reports none.
        :returns: CollectionResult with quotes and errors per denom.
        """
        result = CollectionResult(
            quotes={denom: [] for denom in pairs},
            errors={denom: {} for denom in pairs},
        )

        jobs: list[tuple[str, str]] = []
        tasks = []
        for denom, (pair, sources) in pairs.items():
            for source in sources:
                fetcher = self.fetchers.get(source)
                if fetcher is None:
                    result.errors[denom][source] = SourceError(
                        SourceErrorKind.UNAVAILABLE, f"[{source}] Unknown source"
                    )
                    continue
                if not fetcher.supports_pair(pair.base, pair.quote):
                    result.errors[denom][source] = SourceError(
                        SourceErrorKind.UNAVAILABLE,
                        f"[{source}] Pair {pair} not supported",
                    )
                    continue
                jobs.append((denom, source))
                tasks.append(self._fetch_single(fetcher, pair, now))

        if not tasks:
            return result

        outcomes = await asyncio.gather(*tasks)

        for (denom, source), outcome in zip(jobs, outcomes, strict=True):
            if isinstance(outcome, SourceError):
                result.errors[denom][source] = outcome
            else:
                result.quotes[denom].append(outcome)

        return result

    async def _fetch_single(
        self,
        fetcher: BaseFetcher,
        pair: TradingPair,
        now: float | None,
    ) -> Quote | SourceError:
        """Fetch and normalize one pair from one source with timeout.

        :param fetcher: Fetcher instance to use.
        :param pair: Pair to request.
        :param now: Fallback observation time.
        :returns: Quote, or the SourceError describing the failure.
        """
        try:
            raw = await asyncio.wait_for(
                fetcher.fetch(pair.base, pair.quote),
                timeout=self.fetch_timeout,
            )
            return normalize_quote(
                raw, pair, now=time.time() if now is None else now
            )
        except asyncio.TimeoutError:
            logger.warning(f"[{fetcher.name}] Timeout fetching {pair}")
            return SourceError(
                SourceErrorKind.UNAVAILABLE,
                f"[{fetcher.name}] Timed out after {self.fetch_timeout}s",
            )
        except SourceError as e:
            logger.warning(f"[{fetcher.name}] {e.kind.value} fetching {pair}: {e}")
            return e
        except Exception as e:
            logger.warning(f"[{fetcher.name}] Error fetching {pair}: {e}")
            return SourceError(SourceErrorKind.UNAVAILABLE, f"[{fetcher.name}] {e}")
