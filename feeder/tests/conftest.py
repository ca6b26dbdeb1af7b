"""Shared fixtures."""

from decimal import Decimal

import bech32
import pytest

from feeder.src.PriceAggregator import ExchangeRate
from feeder.src.QuoteNormalizer import Quote
from feeder.src.TradingPair import TradingPair


def make_address(hrp: str, seed: int) -> str:
    """Build a valid bech32 address over 20 bytes of ``seed``."""
    return bech32.bech32_encode(hrp, bech32.convertbits(bytes([seed] * 20), 8, 5))


FEEDER = make_address("terra", 1)
VALIDATOR = make_address("terravaloper", 2)


def make_quote(
    rate: str, source: str, observed_at: float = 1000.0, pair: TradingPair | None = None
) -> Quote:
    return Quote(
        pair=pair or TradingPair("luna", "krw"),
        rate=Decimal(rate),
        source=source,
        observed_at=observed_at,
    )


def make_rate(denom: str, rate: str, cycle_time: float = 1000.0) -> ExchangeRate:
    return ExchangeRate(denom=denom, rate=Decimal(rate), cycle_time=cycle_time)


@pytest.fixture
def feeder_address() -> str:
    return FEEDER


@pytest.fixture
def validator_address() -> str:
    return VALIDATOR
