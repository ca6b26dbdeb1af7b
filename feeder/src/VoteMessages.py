"""VoteMessages: Oracle prevote/vote messages and unsigned tx bodies.

The oracle module accepts one aggregate prevote (a truncated SHA-256
commitment) per vote period and, in the following period, the aggregate
vote revealing the salt and rates that produced it.

Commitment format::

    hex(sha256("{salt}:{exchange_rates}:{feeder}:{validator}")[:20])

where ``exchange_rates`` is the chain's ``ExchangeRateTuples`` string, e.g.
``"9420.500000000000000000ukrw,1.002000000000000000uusd"``.
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping

import bech32

PREVOTE_TYPE = "oracle/MsgAggregateExchangeRatePrevote"
VOTE_TYPE = "oracle/MsgAggregateExchangeRateVote"

# Tendermint truncated hash size
HASH_BYTES = 20
RATE_DECIMALS = 18
ADDRESS_BYTES = 20


def _rate_items(rates: Mapping[str, Decimal] | Iterable[tuple[str, Decimal]]):
    items = rates.items() if isinstance(rates, Mapping) else rates
    return sorted(items, key=lambda item: item[0])


def format_rate(rate: Decimal) -> str:
    """Format a rate as a chain decimal with 18 fractional digits."""
    if not rate > 0:
        raise ValueError(f"Exchange rate must be positive: {rate}")
    return f"{Decimal(rate):.{RATE_DECIMALS}f}"


def encode_exchange_rates(
    rates: Mapping[str, Decimal] | Iterable[tuple[str, Decimal]],
) -> str:
    """Encode rates as the chain's exchange rate tuple string.

    :param rates: Denom to rate, as a mapping or (denom, rate) pairs.
    :returns: Comma separated ``<rate><denom>`` entries sorted by denom.
    :raises ValueError: If there are no rates or a rate is not positive.
    """
    items = _rate_items(rates)
    if not items:
        raise ValueError("At least one exchange rate is required")
    return ",".join(f"{format_rate(rate)}{denom}" for denom, rate in items)


def _commitment(salt: str, exchange_rates: str, feeder: str, validator: str) -> str:
    data = f"{salt}:{exchange_rates}:{feeder}:{validator}"
    return hashlib.sha256(data.encode()).digest()[:HASH_BYTES].hex()


def generate_salt() -> str:
    """Return a fresh 64 hex character salt."""
    return secrets.token_hex(32)


def vote_hash(
    salt: str,
    rates: Mapping[str, Decimal] | Iterable[tuple[str, Decimal]],
    feeder: str,
    validator: str,
) -> str:
    """Compute the prevote commitment for a future vote.

    :param salt: Salt revealed with the vote.
    :param rates: Rates revealed with the vote.
    :param feeder: Feeder account address (bech32).
    :param validator: Validator operator address (bech32).
    :returns: 40 hex character commitment.
    """
    return _commitment(salt, encode_exchange_rates(rates), feeder, validator)


def validate_address(address: str, hrp: str) -> bytes:
    """Decode a bech32 address and check its human-readable prefix.

    :param address: Address such as "terra1...".
    :param hrp: Expected prefix such as "terra" or "terravaloper".
    :returns: Raw 20 address bytes.
    :raises ValueError: On a bad checksum, wrong prefix or length.
    """
    decoded_hrp, data = bech32.bech32_decode(address)
    if decoded_hrp is None or data is None:
        raise ValueError(f"Invalid bech32 address: {address!r}")
    if decoded_hrp != hrp:
        raise ValueError(
            f"Address {address!r} has prefix '{decoded_hrp}', expected '{hrp}'"
        )
    raw = bech32.convertbits(data, 5, 8, False)
    if raw is None or len(raw) != ADDRESS_BYTES:
        raise ValueError(f"Address {address!r} does not decode to {ADDRESS_BYTES} bytes")
    return bytes(raw)


@dataclass(frozen=True)
class MsgAggregateExchangeRatePrevote:
    """Commitment to next period's vote."""

    hash: str
    feeder: str
    validator: str

    def to_json(self) -> dict[str, Any]:
        return {
            "type": PREVOTE_TYPE,
            "value": {
                "hash": self.hash,
                "feeder": self.feeder,
                "validator": self.validator,
            },
        }


@dataclass(frozen=True)
class MsgAggregateExchangeRateVote:
    """Reveal of the previous period's commitment."""

    salt: str
    exchange_rates: str
    feeder: str
    validator: str

    @classmethod
    def from_rates(
        cls,
        salt: str,
        rates: Mapping[str, Decimal] | Iterable[tuple[str, Decimal]],
        feeder: str,
        validator: str,
    ) -> MsgAggregateExchangeRateVote:
        return cls(salt, encode_exchange_rates(rates), feeder, validator)

    def prevote(self) -> MsgAggregateExchangeRatePrevote:
        """Compute the prevote committing to this vote."""
        digest = _commitment(
            self.salt, self.exchange_rates, self.feeder, self.validator
        )
        return MsgAggregateExchangeRatePrevote(digest, self.feeder, self.validator)

    def to_json(self) -> dict[str, Any]:
        return {
            "type": VOTE_TYPE,
            "value": {
                "salt": self.salt,
                "exchange_rates": self.exchange_rates,
                "feeder": self.feeder,
                "validator": self.validator,
            },
        }


@dataclass(frozen=True)
class Fee:
    """Transaction fee.

    :ivar amount: Fee amount in the smallest unit.
    :ivar denom: Fee denom.
    :ivar gas: Gas limit.
    """

    amount: int = 356100
    denom: str = "ukrw"
    gas: int = 200000

    def to_json(self) -> dict[str, Any]:
        return {
            "amount": [{"denom": self.denom, "amount": str(self.amount)}],
            "gas": str(self.gas),
        }


def build_tx(
    msgs: Iterable[MsgAggregateExchangeRatePrevote | MsgAggregateExchangeRateVote],
    chain_id: str,
    fee: Fee,
    memo: str = "",
) -> dict[str, Any]:
    """Build an unsigned tx body for the signer.

    :param msgs: Messages to include, in order.
    :param chain_id: Target chain id.
    :param fee: Fee to pay.
    :param memo: Tx memo.
    :returns: JSON-serializable tx body.
    :raises ValueError: If no messages are given.
    """
    encoded = [msg.to_json() for msg in msgs]
    if not encoded:
        raise ValueError("A transaction needs at least one message")
    return {
        "chain_id": chain_id,
        "fee": fee.to_json(),
        "memo": memo,
        "msgs": encoded,
    }
