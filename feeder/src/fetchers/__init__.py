"""
Price fetchers for multiple API sources.

This module provides a unified interface for fetching spot prices
from exchanges and FX rate APIs.

Usage:
    from feeder.src.fetchers import get_fetcher, get_available_fetchers

    available = get_available_fetchers()
    # ['alphavantage', 'binance', 'bithumb', 'bitstamp', 'coinbase', 'coinone', ...]

    fetcher = get_fetcher("coinone")
    raw = await fetcher.fetch("luna", "krw")

    # For fetchers requiring API keys
    fetcher = get_fetcher("alphavantage", api_key="your-api-key")
"""

# Import base classes and utilities
from .base import (
    FETCHER_REGISTRY,
    BaseFetcher,
    RawQuote,
    SourceConfigError,
    SourceError,
    SourceErrorKind,
    SourceHTTPError,
    get_available_fetchers,
    get_fetcher,
    orderbook_midpoint,
    register_fetcher,
)

# Import all fetcher implementations to trigger registration
from .alphavantage import AlphaVantageFetcher
from .binance import BinanceFetcher
from .bithumb import BithumbFetcher
from .bitstamp import BitstampFetcher
from .coinbase import CoinbaseFetcher
from .coinone import CoinoneFetcher
from .currencylayer import CurrencylayerFetcher
from .dunamu import DunamuFetcher
from .gdac import GdacFetcher
from .gopax import GopaxFetcher
from .imf_sdr import ImfSdrFetcher
from .kraken import KrakenFetcher

__all__ = [
    # Base classes
    "BaseFetcher",
    "RawQuote",
    "SourceError",
    "SourceErrorKind",
    "SourceConfigError",
    "SourceHTTPError",
    "orderbook_midpoint",
    # Registry functions
    "register_fetcher",
    "get_fetcher",
    "get_available_fetchers",
    "FETCHER_REGISTRY",
    # Fetcher implementations
    "AlphaVantageFetcher",
    "BinanceFetcher",
    "BithumbFetcher",
    "BitstampFetcher",
    "CoinbaseFetcher",
    "CoinoneFetcher",
    "CurrencylayerFetcher",
    "DunamuFetcher",
    "GdacFetcher",
    "GopaxFetcher",
    "ImfSdrFetcher",
    "KrakenFetcher",
]
