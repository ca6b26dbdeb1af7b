"""VoteStateMachine: Commit-reveal voting driven by block height.

Each network is either ``idle`` (no commitment) or ``committed`` (holding
the salt and rates of a prevote awaiting its reveal). The machine only acts
on vote period boundaries; within a boundary the pending vote is always
submitted before the next prevote.

Transitions at the boundary of period Q:
    1. Committed in period Q-1 and Q is current: submit the vote.
       Any other commitment is stale and discarded, never replayed.
    2. Q is behind the chain tip: nothing more to do for this boundary.
    3. Fresh rates available: submit a prevote and become committed.
    4. No fresh rates: skip the period and stay idle.

.. code-block:: python

    >>> state = NetworkState("columbus")
    >>> await machine.on_height(state, 500, tip=500)   # period 100: prevote
    >>> state.status
    'committed'
    >>> await machine.on_height(state, 505, tip=505)   # period 101: vote
    >>> state.votes
    1
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Callable

from .PriceAggregator import ExchangeRate
from .signer.base import SubmitError
from .SubmissionClient import SubmissionClient
from .VoteMessages import (
    Fee,
    MsgAggregateExchangeRatePrevote,
    MsgAggregateExchangeRateVote,
    build_tx,
    generate_salt,
    vote_hash,
)

logger = logging.getLogger(__name__)


class SkipReason(str, Enum):
    """Why a period ended without the expected transaction."""

    NO_FRESH_RATES = "no_fresh_rates"
    MISSED_VOTE_WINDOW = "missed_vote_window"
    VOTE_FAILED = "vote_failed"
    PREVOTE_FAILED = "prevote_failed"
    PERIOD_SKIPPED = "period_skipped"


@dataclass(frozen=True)
class VotePeriod:
    """Half-open height range ``[start, end)`` of one commit/reveal round.

    :ivar index: Period number, ``height // period_length``.
    :ivar start: First height of the period.
    :ivar end: First height of the next period.
    """

    index: int
    start: int
    end: int

    @classmethod
    def of(cls, height: int, period_length: int) -> VotePeriod:
        index = height // period_length
        start = index * period_length
        return cls(index=index, start=start, end=start + period_length)


@dataclass(frozen=True)
class PendingCommitment:
    """What a prevote committed to.

    :ivar rates: (denom, rate) pairs sorted by denom.
    :ivar salt: Salt to reveal with the vote.
    :ivar hash: Commitment hash submitted in the prevote.
    :ivar period: Period in which the prevote was submitted.
    """

    rates: tuple[tuple[str, Decimal], ...]
    salt: str
    hash: str
    period: int

    @property
    def denoms(self) -> list[str]:
        return [denom for denom, _ in self.rates]


@dataclass(frozen=True)
class SkipRecord:
    reason: SkipReason
    period: int
    height: int


@dataclass
class NetworkState:
    """Voting state of one network, owned by its coordinator task.

    :ivar network_id: Configured network id.
    :ivar last_height: Last observed block height.
    :ivar commitment: Outstanding prevote, if any.
    :ivar rates: Latest aggregated rate per denom, consumed by prevotes.
    :ivar prevotes: Successful prevotes.
    :ivar votes: Successful votes.
    :ivar missed_votes: Commitments discarded without a successful vote.
    :ivar skipped_periods: Periods without fresh rates.
    :ivar last_skip: Most recent skip.
    :ivar last_error: Most recent error message.
    :ivar last_tx: Hash of the most recent successful transaction.
    """

    network_id: str
    last_height: int | None = None
    commitment: PendingCommitment | None = None
    rates: dict[str, ExchangeRate] = field(default_factory=dict)
    prevotes: int = 0
    votes: int = 0
    missed_votes: int = 0
    skipped_periods: int = 0
    last_skip: SkipRecord | None = None
    last_error: str | None = None
    last_tx: str | None = None

    @property
    def status(self) -> str:
        return "idle" if self.commitment is None else "committed"

    def snapshot(self) -> dict[str, Any]:
        """JSON-serializable view for the status listener.

        The salt is left out, it must stay secret until the vote.
        """
        commitment = None
        if self.commitment is not None:
            commitment = {
                "period": self.commitment.period,
                "hash": self.commitment.hash,
                "denoms": self.commitment.denoms,
            }
        last_skip = None
        if self.last_skip is not None:
            last_skip = {
                "reason": self.last_skip.reason.value,
                "period": self.last_skip.period,
                "height": self.last_skip.height,
            }
        return {
            "network_id": self.network_id,
            "status": self.status,
            "last_height": self.last_height,
            "commitment": commitment,
            "rates": {
                denom: {"rate": str(rate.rate), "cycle_time": rate.cycle_time}
                for denom, rate in sorted(self.rates.items())
            },
            "prevotes": self.prevotes,
            "votes": self.votes,
            "missed_votes": self.missed_votes,
            "skipped_periods": self.skipped_periods,
            "last_skip": last_skip,
            "last_error": self.last_error,
            "last_tx": self.last_tx,
        }


class VoteStateMachine:
    """Turns height observations into prevote and vote transactions.

    :ivar submission: Client used to submit transactions.
    :ivar feeder: Feeder account address.
    :ivar validator: Validator operator address.
    :ivar period_length: Vote period length in blocks.
    :ivar chain_id: Chain id put in tx bodies.
    :ivar fee: Fee paid per transaction.
    :ivar memo: Memo put in tx bodies.
    :ivar max_rate_age: Rates older than this (seconds) are not committed.
    """

    def __init__(
        self,
        submission: SubmissionClient,
        feeder: str,
        validator: str,
        period_length: int,
        chain_id: str,
        fee: Fee | None = None,
        memo: str = "",
        max_rate_age: float = 60.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the state machine.

        :raises ValueError: If period_length or max_rate_age is not positive.
        """
        if period_length < 1:
            raise ValueError("period_length must be at least 1")
        if max_rate_age <= 0:
            raise ValueError("max_rate_age must be positive")
        self.submission = submission
        self.feeder = feeder
        self.validator = validator
        self.period_length = period_length
        self.chain_id = chain_id
        self.fee = fee or Fee()
        self.memo = memo
        self.max_rate_age = max_rate_age
        self._clock = clock

    def period(self, height: int) -> VotePeriod:
        return VotePeriod.of(height, self.period_length)

    def is_boundary(self, height: int) -> bool:
        return height % self.period_length == 0

    async def on_height(
        self, state: NetworkState, height: int, tip: int
    ) -> list[SkipReason]:
        """Advance the state machine to one newly observed height.

        Called once per height in order; ``tip`` is the latest height
        observed, so boundaries behind it can be recognized as history.

        :param state: The network's state, mutated in place.
        :param height: Height being processed.
        :param tip: Latest observed height.
        :returns: Skips that occurred at this height.
        """
        if not self.is_boundary(height):
            return []

        period = self.period(height).index
        current = period == self.period(tip).index
        skips: list[SkipReason] = []

        commitment = state.commitment
        if commitment is not None:
            if commitment.period + 1 == period and current:
                if not await self._vote(state, commitment, height):
                    skips.append(SkipReason.VOTE_FAILED)
            else:
                state.commitment = None
                state.missed_votes += 1
                self._record_skip(state, SkipReason.MISSED_VOTE_WINDOW, period, height)
                logger.warning(
                    f"[{state.network_id}] Missed vote window for period "
                    f"{commitment.period} commitment at height {height}; discarded"
                )
                skips.append(SkipReason.MISSED_VOTE_WINDOW)

        if not current:
            logger.debug(
                f"[{state.network_id}] Period {period} boundary at {height} is "
                f"behind tip {tip}; no prevote"
            )
            skips.append(SkipReason.PERIOD_SKIPPED)
            return skips

        now = self._clock()
        fresh = {
            denom: rate
            for denom, rate in state.rates.items()
            if now - rate.cycle_time <= self.max_rate_age
        }
        if not fresh:
            state.skipped_periods += 1
            self._record_skip(state, SkipReason.NO_FRESH_RATES, period, height)
            logger.info(
                f"[{state.network_id}] No fresh rates at height {height}; "
                f"skipping period {period}"
            )
            skips.append(SkipReason.NO_FRESH_RATES)
            return skips

        if not await self._prevote(state, fresh, period, height):
            skips.append(SkipReason.PREVOTE_FAILED)
        return skips

    async def _vote(
        self, state: NetworkState, commitment: PendingCommitment, height: int
    ) -> bool:
        msg = MsgAggregateExchangeRateVote.from_rates(
            commitment.salt, commitment.rates, self.feeder, self.validator
        )
        tx = build_tx([msg], self.chain_id, self.fee, self.memo)
        try:
            tx_hash = await self.submission.submit(tx)
        except SubmitError as e:
            # A failed reveal cannot be retried next period
            state.commitment = None
            state.missed_votes += 1
            state.last_error = f"vote: {e}"
            self._record_skip(state, SkipReason.VOTE_FAILED, commitment.period + 1, height)
            logger.error(
                f"[{state.network_id}] Vote for period {commitment.period} failed: {e}"
            )
            return False

        state.commitment = None
        state.votes += 1
        state.last_tx = tx_hash
        logger.info(
            f"[{state.network_id}] Voted {msg.exchange_rates} at height {height} (tx {tx_hash})"
        )
        return True

    async def _prevote(
        self,
        state: NetworkState,
        fresh: dict[str, ExchangeRate],
        period: int,
        height: int,
    ) -> bool:
        rates = tuple(sorted((denom, rate.rate) for denom, rate in fresh.items()))
        salt = generate_salt()
        digest = vote_hash(salt, rates, self.feeder, self.validator)
        msg = MsgAggregateExchangeRatePrevote(digest, self.feeder, self.validator)
        tx = build_tx([msg], self.chain_id, self.fee, self.memo)
        try:
            tx_hash = await self.submission.submit(tx)
        except SubmitError as e:
            state.last_error = f"prevote: {e}"
            self._record_skip(state, SkipReason.PREVOTE_FAILED, period, height)
            logger.error(f"[{state.network_id}] Prevote for period {period} failed: {e}")
            return False

        state.commitment = PendingCommitment(
            rates=rates, salt=salt, hash=digest, period=period
        )
        for denom in fresh:
            state.rates.pop(denom, None)
        state.prevotes += 1
        state.last_tx = tx_hash
        logger.info(
            f"[{state.network_id}] Prevoted {digest} for {', '.join(d for d, _ in rates)} "
            f"at height {height} (tx {tx_hash})"
        )
        return True

    @staticmethod
    def _record_skip(
        state: NetworkState, reason: SkipReason, period: int, height: int
    ) -> None:
        state.last_skip = SkipRecord(reason=reason, period=period, height=height)
