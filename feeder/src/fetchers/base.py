"""Base fetcher interface and shared HTTP client management.

All price fetchers inherit from BaseFetcher and implement the fetch() method,
which returns the exchange's answer as a RawQuote or raises SourceError.
A shared httpx.AsyncClient is used across all fetchers to avoid connection
overhead; it can be routed through an egress proxy.

.. code-block:: python

    @register_fetcher
    class MyFetcher(BaseFetcher):
        name = "myfetcher"

        async def fetch(self, base: str, quote: str) -> RawQuote:
            response = await self._get(f"https://api.example.com/{base}/{quote}")
            data = self._json(response)
            return self._raw(base, quote, data["price"])
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, ClassVar, Iterable

import httpx

logger = logging.getLogger(__name__)

USER_AGENT = "oracle-feeder"


class SourceErrorKind(str, Enum):
    """Why a source produced no quote this cycle."""

    MALFORMED = "malformed"
    UNAVAILABLE = "unavailable"
    RATE_LIMITED = "rate_limited"


class SourceError(Exception):
    """Base exception for price source errors.

    :ivar kind: Classification of the failure.
    """

    def __init__(self, kind: SourceErrorKind, message: str):
        self.kind = kind
        super().__init__(message)


class SourceConfigError(SourceError):
    """Raised when fetcher configuration is invalid (e.g., missing API key)."""

    def __init__(self, message: str):
        super().__init__(SourceErrorKind.UNAVAILABLE, message)


class SourceHTTPError(SourceError):
    """Raised when HTTP request fails.

    :ivar status_code: HTTP status code from the failed request.
    """

    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        kind = (
            SourceErrorKind.RATE_LIMITED
            if status_code == 429
            else SourceErrorKind.UNAVAILABLE
        )
        super().__init__(kind, f"HTTP {status_code}: {message}")


@dataclass(frozen=True)
class RawQuote:
    """A price exactly as a source reported it.

    :ivar source: Fetcher name.
    :ivar base: Base currency the source was asked for.
    :ivar quote: Quote currency the source was asked for.
    :ivar price: Reported price (string, number or Decimal).
    :ivar timestamp: Source-reported observation time, unix seconds or ms.
    """

    source: str
    base: str
    quote: str
    price: Any
    timestamp: float | None = None


def orderbook_midpoint(asks: Iterable[Any], bids: Iterable[Any]) -> Decimal:
    """Midpoint of the lowest ask and highest bid.

    :param asks: Ask prices in any order.
    :param bids: Bid prices in any order.
    :returns: (lowest ask + highest bid) / 2.
    :raises SourceError: If either side of the book is empty or unparseable.
    """
    try:
        ask_prices = [Decimal(str(a)) for a in asks]
        bid_prices = [Decimal(str(b)) for b in bids]
    except InvalidOperation as e:
        raise SourceError(SourceErrorKind.MALFORMED, f"Bad order book price: {e}") from e
    if not ask_prices or not bid_prices:
        raise SourceError(SourceErrorKind.MALFORMED, "Order book has an empty side")
    return (min(ask_prices) + max(bid_prices)) / 2


class BaseFetcher(ABC):
    """Abstract base class for price fetchers.

    Subclasses must implement:
        - name: Class variable identifying the source (e.g., "binance")
        - fetch(): Async method returning a RawQuote for a trading pair

    :cvar name: Unique identifier for this fetcher.
    :cvar DEFAULT_TIMEOUT: Default HTTP request timeout in seconds.
    :cvar REQUIRES_API_KEY: Whether construction without a key is an error.
    :ivar api_key: Optional API key for authenticated endpoints.
    :ivar timeout: Request timeout in seconds.
    """

    # Class-level shared HTTP client
    _shared_client: ClassVar[httpx.AsyncClient | None] = None
    _proxy: ClassVar[str | None] = None

    name: ClassVar[str] = ""

    DEFAULT_TIMEOUT = 10.0
    REQUIRES_API_KEY: ClassVar[bool] = False

    def __init__(self, api_key: str | None = None, timeout: float | None = None):
        """Initialize the fetcher.

        :param api_key: Optional API key for authenticated endpoints.
        :param timeout: Request timeout in seconds (default: 10).
        :raises SourceConfigError: If the source needs a key and none is given.
        """
        self.api_key = api_key
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        if self.REQUIRES_API_KEY and not self.has_api_key:
            raise SourceConfigError(f"[{self.name}] API key required")

    @property
    def has_api_key(self) -> bool:
        """Check if this fetcher has an API key configured."""
        return self.api_key is not None and len(self.api_key) > 0

    @classmethod
    def configure_shared_client(cls, proxy: str | None = None) -> None:
        """Set egress options for the shared client.

        Takes effect the next time the client is created.

        :param proxy: Optional proxy URL for all source traffic.
        """
        BaseFetcher._proxy = proxy

    @classmethod
    def get_shared_client(cls) -> httpx.AsyncClient:
        """Get or create the shared HTTP client.

        :returns: Shared httpx.AsyncClient instance.
        """
        client = BaseFetcher._shared_client
        if client is None or client.is_closed:
            client = httpx.AsyncClient(
                timeout=httpx.Timeout(30.0, connect=10.0),
                limits=httpx.Limits(max_connections=50, max_keepalive_connections=20),
                headers={"User-Agent": USER_AGENT},
                follow_redirects=True,
                proxy=BaseFetcher._proxy,
            )
            BaseFetcher._shared_client = client
        return client

    @classmethod
    async def close_shared_client(cls) -> None:
        """Close the shared HTTP client."""
        client = BaseFetcher._shared_client
        if client is not None and not client.is_closed:
            await client.aclose()
        BaseFetcher._shared_client = None

    @abstractmethod
    async def fetch(self, base: str, quote: str) -> RawQuote:
        """Fetch the current price for a trading pair.

        :param base: Base currency symbol (e.g., "luna").
        :param quote: Quote currency symbol (e.g., "krw").
        :returns: The source's raw answer.
        :raises SourceError: On any failure.
        """

    def supports_pair(self, base: str, quote: str) -> bool:
        """Check if this fetcher supports the given trading pair.

        :param base: Base currency symbol.
        :param quote: Quote currency symbol.
        :returns: True if pair is supported.
        """
        return True

    def _raw(
        self, base: str, quote: str, price: Any, timestamp: float | None = None
    ) -> RawQuote:
        return RawQuote(
            source=self.name, base=base, quote=quote, price=price, timestamp=timestamp
        )

    @staticmethod
    def _timestamp(value: Any) -> float | None:
        """Best-effort conversion of a source timestamp to a float."""
        if value is None or value == "":
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    def _json(self, response: httpx.Response) -> Any:
        """Decode a JSON body.

        :raises SourceError: MALFORMED if the body is not JSON.
        """
        try:
            return response.json()
        except ValueError as e:
            raise SourceError(
                SourceErrorKind.MALFORMED, f"[{self.name}] Invalid JSON: {e}"
            ) from e

    def _malformed(self, message: str) -> SourceError:
        return SourceError(SourceErrorKind.MALFORMED, f"[{self.name}] {message}")

    async def _get(
        self,
        url: str,
        *,
        params: dict | None = None,
        headers: dict | None = None,
    ) -> httpx.Response:
        """Make an HTTP GET request using the shared client.

        :param url: Request URL.
        :param params: Optional query parameters.
        :param headers: Optional request headers.
        :returns: httpx.Response object.
        :raises SourceHTTPError: On non-2xx response.
        :raises SourceError: On network/timeout errors.
        """
        client = self.get_shared_client()
        try:
            response = await client.get(
                url,
                params=params,
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise SourceError(
                SourceErrorKind.UNAVAILABLE, f"Request timeout: {e}"
            ) from e
        except httpx.RequestError as e:
            raise SourceError(
                SourceErrorKind.UNAVAILABLE, f"Request failed: {e}"
            ) from e

        if not response.is_success:
            logger.debug(
                "HTTP GET %s failed with status %s: %s",
                url,
                response.status_code,
                response.text[:200],
            )
            raise SourceHTTPError(response.status_code, response.text[:200])
        return response


# Registry of available fetchers (populated by subclass imports)
FETCHER_REGISTRY: dict[str, type[BaseFetcher]] = {}


def register_fetcher(cls: type[BaseFetcher]) -> type[BaseFetcher]:
    """Decorator to register a fetcher class in the global registry.

    :param cls: Fetcher class to register.
    :returns: The registered class (unchanged).
    :raises ValueError: If fetcher has no name defined.
    """
    if not cls.name:
        raise ValueError(f"Fetcher {cls.__name__} must define a 'name' class variable")
    FETCHER_REGISTRY[cls.name] = cls
    return cls


def get_fetcher(
    name: str, api_key: str | None = None, timeout: float | None = None
) -> BaseFetcher:
    """Get a fetcher instance by name.

    :param name: Fetcher name (e.g., "coinone", "binance").
    :param api_key: Optional API key.
    :param timeout: Optional per-request timeout.
    :returns: Fetcher instance.
    :raises ValueError: If fetcher name is unknown.
    :raises SourceConfigError: If the fetcher needs an API key.
    """
    if name not in FETCHER_REGISTRY:
        available = ", ".join(sorted(FETCHER_REGISTRY.keys()))
        raise ValueError(f"Unknown fetcher '{name}'. Available: {available}")
    return FETCHER_REGISTRY[name](api_key=api_key, timeout=timeout)


def get_available_fetchers() -> list[str]:
    """Get list of available fetcher names.

    :returns: Sorted list of registered fetcher names.
    """
    return sorted(FETCHER_REGISTRY.keys())
