"""Unit tests for VoteStateMachine."""

import asyncio
import json

import pytest
from conftest import FEEDER, VALIDATOR, make_rate

from feeder.src.signer.base import SubmitError, SubmitErrorKind
from feeder.src.VoteMessages import PREVOTE_TYPE, VOTE_TYPE, Fee, vote_hash
from feeder.src.VoteStateMachine import (
    NetworkState,
    PendingCommitment,
    SkipReason,
    VotePeriod,
    VoteStateMachine,
)

NOW = 1000.0
PERIOD = 5


class FakeSubmission:
    """Records tx bodies; raises queued errors for upcoming submissions."""

    def __init__(self) -> None:
        self.txs: list[dict] = []
        self.errors: list[BaseException | None] = []

    async def submit(self, tx_body: dict) -> str:
        error = self.errors.pop(0) if self.errors else None
        if error is not None:
            raise error
        self.txs.append(tx_body)
        return f"HASH{len(self.txs)}"

    @property
    def kinds(self) -> list[str]:
        return [tx["msgs"][0]["type"] for tx in self.txs]


@pytest.fixture
def submission() -> FakeSubmission:
    return FakeSubmission()


@pytest.fixture
def machine(submission) -> VoteStateMachine:
    return VoteStateMachine(
        submission=submission,
        feeder=FEEDER,
        validator=VALIDATOR,
        period_length=PERIOD,
        chain_id="test-1",
        fee=Fee(),
        memo="memo",
        max_rate_age=30.0,
        clock=lambda: NOW,
    )


@pytest.fixture
def state() -> NetworkState:
    return NetworkState(network_id="test")


async def advance(machine, state, start: int, end: int) -> list[SkipReason]:
    """Feed heights start..end inclusive, as the coordinator does."""
    skips = []
    for h in range(start, end + 1):
        skips.extend(await machine.on_height(state, h, tip=end))
        state.last_height = h
    return skips


class TestVotePeriod:
    """Test period arithmetic."""

    def test_of(self) -> None:
        assert VotePeriod.of(0, 5) == VotePeriod(index=0, start=0, end=5)
        assert VotePeriod.of(14, 5) == VotePeriod(index=2, start=10, end=15)
        assert VotePeriod.of(15, 5) == VotePeriod(index=3, start=15, end=20)

    def test_invalid_period_length(self, submission) -> None:
        with pytest.raises(ValueError, match="period_length"):
            VoteStateMachine(submission, FEEDER, VALIDATOR, 0, "test-1")


class TestCommitReveal:
    """Test the prevote-then-vote cycle."""

    @pytest.mark.asyncio
    async def test_prevote_then_vote(self, machine, state, submission) -> None:
        """Fresh rate at period N prevotes; period N+1 reveals it."""
        state.rates["uusd"] = make_rate("uusd", "1.5", cycle_time=NOW)

        assert await machine.on_height(state, 10, tip=10) == []
        assert submission.kinds == [PREVOTE_TYPE]
        assert state.status == "committed"
        assert state.commitment.period == 2
        assert state.rates == {}
        assert state.prevotes == 1

        commitment = state.commitment
        prevote = submission.txs[0]["msgs"][0]["value"]
        assert prevote["hash"] == commitment.hash
        assert prevote["feeder"] == FEEDER
        assert prevote["validator"] == VALIDATOR
        assert commitment.hash == vote_hash(commitment.salt, commitment.rates, FEEDER, VALIDATOR)

        # No vote inside the prevote's own period
        assert await advance(machine, state, 11, 14) == []
        assert submission.kinds == [PREVOTE_TYPE]

        skips = await machine.on_height(state, 15, tip=15)
        assert submission.kinds == [PREVOTE_TYPE, VOTE_TYPE]
        vote = submission.txs[1]["msgs"][0]["value"]
        assert vote["salt"] == commitment.salt
        assert vote["exchange_rates"] == "1.500000000000000000uusd"

        # Nothing fresh left to commit, so back to idle
        assert skips == [SkipReason.NO_FRESH_RATES]
        assert state.status == "idle"
        assert state.commitment is None
        assert state.votes == 1
        assert state.missed_votes == 0

    @pytest.mark.asyncio
    async def test_no_fresh_rate_skips_period(self, machine, state, submission) -> None:
        """Without a rate no prevote is sent and the state stays idle."""
        skips = await machine.on_height(state, 10, tip=10)

        assert skips == [SkipReason.NO_FRESH_RATES]
        assert submission.txs == []
        assert state.status == "idle"
        assert state.skipped_periods == 1
        assert state.last_skip.reason == SkipReason.NO_FRESH_RATES
        assert state.last_skip.period == 2

    @pytest.mark.asyncio
    async def test_stale_rate_not_committed(self, machine, state, submission) -> None:
        """Rates older than max_rate_age are not committed."""
        state.rates["uusd"] = make_rate("uusd", "1.5", cycle_time=NOW - 31)

        assert await machine.on_height(state, 10, tip=10) == [SkipReason.NO_FRESH_RATES]
        assert submission.txs == []

    @pytest.mark.asyncio
    async def test_only_fresh_denoms_committed(self, machine, state, submission) -> None:
        state.rates["uusd"] = make_rate("uusd", "1.5", cycle_time=NOW)
        state.rates["ukrw"] = make_rate("ukrw", "1800", cycle_time=NOW - 100)

        await machine.on_height(state, 10, tip=10)

        assert state.commitment.denoms == ["uusd"]
        assert list(state.rates) == ["ukrw"]

    @pytest.mark.asyncio
    async def test_non_boundary_heights_do_nothing(self, machine, state, submission) -> None:
        state.rates["uusd"] = make_rate("uusd", "1.5", cycle_time=NOW)
        for h in (11, 12, 13, 14):
            assert await machine.on_height(state, h, tip=h) == []
        assert submission.txs == []

    @pytest.mark.asyncio
    async def test_vote_submitted_before_next_prevote(self, machine, state, submission) -> None:
        """At a boundary with both due, the vote goes first."""
        state.rates["uusd"] = make_rate("uusd", "1.5", cycle_time=NOW)
        await machine.on_height(state, 10, tip=10)
        first = state.commitment

        state.rates["uusd"] = make_rate("uusd", "1.6", cycle_time=NOW)
        assert await machine.on_height(state, 15, tip=15) == []

        assert submission.kinds == [PREVOTE_TYPE, VOTE_TYPE, PREVOTE_TYPE]
        assert submission.txs[1]["msgs"][0]["value"]["salt"] == first.salt
        assert state.commitment.period == 3
        assert state.commitment.salt != first.salt
        assert state.votes == 1
        assert state.prevotes == 2


class TestMissedWindows:
    """Test discarding of stale commitments."""

    @pytest.mark.asyncio
    async def test_height_jump_discards_commitment(self, machine, state, submission) -> None:
        """Jumping past the reveal window discards without replay."""
        state.rates["uusd"] = make_rate("uusd", "1.5", cycle_time=NOW)
        await machine.on_height(state, 10, tip=10)
        state.last_height = 10
        state.rates["uusd"] = make_rate("uusd", "1.6", cycle_time=NOW)

        skips = await advance(machine, state, 11, 27)

        assert skips == [
            SkipReason.MISSED_VOTE_WINDOW,
            SkipReason.PERIOD_SKIPPED,
            SkipReason.PERIOD_SKIPPED,
        ]
        # One prevote at period 2, one at period 5, never a vote
        assert submission.kinds == [PREVOTE_TYPE, PREVOTE_TYPE]
        assert state.commitment.period == 5
        assert state.missed_votes == 1
        assert state.votes == 0
        assert state.last_skip.reason == SkipReason.MISSED_VOTE_WINDOW

    @pytest.mark.asyncio
    async def test_commitment_two_periods_old_discarded(self, machine, state, submission) -> None:
        """A commitment is only revealed in the immediately next period."""
        state.commitment = PendingCommitment(
            rates=(("uusd", make_rate("uusd", "1").rate),), salt="s", hash="h", period=2
        )

        skips = await machine.on_height(state, 20, tip=20)

        assert SkipReason.MISSED_VOTE_WINDOW in skips
        assert VOTE_TYPE not in submission.kinds
        assert state.commitment is None
        assert state.missed_votes == 1

    @pytest.mark.asyncio
    async def test_rejected_vote_discarded(self, machine, state, submission) -> None:
        """A rejected vote is treated like a missed window."""
        state.rates["uusd"] = make_rate("uusd", "1.5", cycle_time=NOW)
        await machine.on_height(state, 10, tip=10)

        submission.errors = [SubmitError(SubmitErrorKind.REJECTED, "bad fee")]
        state.rates["uusd"] = make_rate("uusd", "1.6", cycle_time=NOW)
        skips = await machine.on_height(state, 15, tip=15)

        assert skips == [SkipReason.VOTE_FAILED]
        assert state.missed_votes == 1
        assert state.votes == 0
        assert "bad fee" in state.last_error
        # The next period still gets its prevote
        assert submission.kinds == [PREVOTE_TYPE, PREVOTE_TYPE]
        assert state.commitment.period == 3

    @pytest.mark.asyncio
    async def test_failed_prevote_stays_idle(self, machine, state, submission) -> None:
        """A failed prevote leaves the rates and state untouched."""
        state.rates["uusd"] = make_rate("uusd", "1.5", cycle_time=NOW)
        submission.errors = [SubmitError(SubmitErrorKind.TIMEOUT, "gave up")]

        skips = await machine.on_height(state, 10, tip=10)

        assert skips == [SkipReason.PREVOTE_FAILED]
        assert state.status == "idle"
        assert "uusd" in state.rates
        assert state.prevotes == 0
        assert state.last_skip.reason == SkipReason.PREVOTE_FAILED

    @pytest.mark.asyncio
    async def test_cancellation_keeps_commitment(self, machine, state, submission) -> None:
        """Cancellation during the vote propagates and leaves the state committed."""
        state.rates["uusd"] = make_rate("uusd", "1.5", cycle_time=NOW)
        await machine.on_height(state, 10, tip=10)
        commitment = state.commitment

        submission.errors = [asyncio.CancelledError()]
        with pytest.raises(asyncio.CancelledError):
            await machine.on_height(state, 15, tip=15)

        assert state.commitment is commitment
        assert state.status == "committed"


class TestSnapshot:
    """Test the status view of NetworkState."""

    @pytest.mark.asyncio
    async def test_snapshot_is_json_and_hides_salt(self, machine, state) -> None:
        state.rates["uusd"] = make_rate("uusd", "1.5", cycle_time=NOW)
        state.rates["ukrw"] = make_rate("ukrw", "1800", cycle_time=NOW - 100)
        await machine.on_height(state, 10, tip=10)

        snapshot = state.snapshot()
        encoded = json.dumps(snapshot)

        assert snapshot["status"] == "committed"
        assert snapshot["commitment"]["period"] == 2
        assert snapshot["commitment"]["denoms"] == ["uusd"]
        assert snapshot["rates"]["ukrw"]["rate"] == "1800"
        assert snapshot["prevotes"] == 1
        assert state.commitment.salt not in encoded

    def test_idle_snapshot(self) -> None:
        snapshot = NetworkState("test").snapshot()
        assert snapshot["status"] == "idle"
        assert snapshot["commitment"] is None
        assert snapshot["last_skip"] is None
