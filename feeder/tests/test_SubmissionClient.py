"""Unit tests for SubmissionClient."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from feeder.src.ChainClient import QueryError
from feeder.src.signer.base import Signer, SubmitError, SubmitErrorKind
from feeder.src.SubmissionClient import RetryState, SubmissionClient

TX = {"chain_id": "test-1", "msgs": []}


class ScriptedSigner(Signer):
    """Signer replaying a script of results (hashes or SubmitErrors)."""

    def __init__(self, *script):
        self.script = list(script)
        self.sequences: list[int] = []

    async def sign_and_broadcast(self, tx_body, network_id, sequence):
        self.sequences.append(sequence)
        outcome = self.script.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class HangingSigner(Signer):
    async def sign_and_broadcast(self, tx_body, network_id, sequence):
        await asyncio.sleep(10)


def make_client(signer, sequences=(7,), **kwargs) -> SubmissionClient:
    chain = AsyncMock()
    chain.account_sequence = AsyncMock(side_effect=list(sequences))
    kwargs.setdefault("backoff_base", 0.0)
    kwargs.setdefault("backoff_max", 0.0)
    return SubmissionClient(signer, chain, "test", "terra1feeder", **kwargs)


def mismatch() -> SubmitError:
    return SubmitError(SubmitErrorKind.SEQUENCE_MISMATCH, "account sequence mismatch")


def timeout() -> SubmitError:
    return SubmitError(SubmitErrorKind.TIMEOUT, "timed out")


class TestRetryState:
    """Test the backoff schedule."""

    def test_grows_by_factor_and_caps(self) -> None:
        state = RetryState(attempt=0, delay=1.0)
        delays = []
        for _ in range(6):
            delays.append(state.delay)
            state = state.next(backoff_max=5.0)
        assert delays == [1.0, 1.5, 2.25, 3.375, 5.0, 5.0]
        assert state.attempt == 6


class TestSubmissionClientInit:
    """Test parameter validation."""

    def test_invalid_max_attempts(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            make_client(ScriptedSigner(), max_attempts=0)

    def test_invalid_backoff(self) -> None:
        with pytest.raises(ValueError, match="backoff"):
            make_client(ScriptedSigner(), backoff_base=5.0, backoff_max=1.0)


class TestSubmit:
    """Test submission, retries and sequence handling."""

    @pytest.mark.asyncio
    async def test_success_loads_and_increments_sequence(self) -> None:
        """The sequence is loaded lazily and bumped after success."""
        signer = ScriptedSigner("HASH1", "HASH2")
        client = make_client(signer)

        assert client.sequence is None
        assert await client.submit(TX) == "HASH1"
        assert await client.submit(TX) == "HASH2"

        assert signer.sequences == [7, 8]
        assert client.sequence == 9
        client.chain.account_sequence.assert_awaited_once_with("terra1feeder")

    @pytest.mark.asyncio
    async def test_sequence_mismatch_refreshes_then_retries(self) -> None:
        """A mismatch reloads the sequence and retries once with it."""
        signer = ScriptedSigner(mismatch(), "HASH")
        client = make_client(signer, sequences=(7, 12))

        assert await client.submit(TX) == "HASH"
        assert signer.sequences == [7, 12]
        assert client.chain.account_sequence.await_count == 2
        assert client.sequence == 13

    @pytest.mark.asyncio
    async def test_timeout_retried(self) -> None:
        """TIMEOUT is retried with the same sequence."""
        signer = ScriptedSigner(timeout(), timeout(), "HASH")
        client = make_client(signer, max_attempts=3)

        assert await client.submit(TX) == "HASH"
        assert signer.sequences == [7, 7, 7]

    @pytest.mark.asyncio
    async def test_rejected_not_retried(self) -> None:
        """REJECTED is raised on the first attempt."""
        signer = ScriptedSigner(SubmitError(SubmitErrorKind.REJECTED, "insufficient fee"), "HASH")
        client = make_client(signer)

        with pytest.raises(SubmitError) as exc_info:
            await client.submit(TX)
        assert exc_info.value.kind == SubmitErrorKind.REJECTED
        assert signer.sequences == [7]
        assert client.sequence == 7

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self) -> None:
        """The last transient error is raised after max_attempts."""
        signer = ScriptedSigner(timeout(), timeout(), timeout(), "HASH")
        client = make_client(signer, max_attempts=3)

        with pytest.raises(SubmitError) as exc_info:
            await client.submit(TX)
        assert exc_info.value.kind == SubmitErrorKind.TIMEOUT
        assert len(signer.sequences) == 3

    @pytest.mark.asyncio
    async def test_refresh_failure_counts_as_attempt(self) -> None:
        """A failing sequence query is a SEQUENCE_MISMATCH attempt."""
        signer = ScriptedSigner("HASH")
        client = make_client(signer, sequences=(QueryError("down"), 3))

        assert await client.submit(TX) == "HASH"
        assert signer.sequences == [3]

    @pytest.mark.asyncio
    async def test_refresh_failure_exhausts_attempts(self) -> None:
        signer = ScriptedSigner()
        client = make_client(
            signer, sequences=(QueryError("down"), QueryError("down")), max_attempts=2
        )

        with pytest.raises(SubmitError) as exc_info:
            await client.submit(TX)
        assert exc_info.value.kind == SubmitErrorKind.SEQUENCE_MISMATCH
        assert signer.sequences == []

    @pytest.mark.asyncio
    async def test_broadcast_timeout(self) -> None:
        """A hung signer call becomes TIMEOUT."""
        client = make_client(HangingSigner(), max_attempts=1, broadcast_timeout=0.01)

        with pytest.raises(SubmitError) as exc_info:
            await client.submit(TX)
        assert exc_info.value.kind == SubmitErrorKind.TIMEOUT

    @pytest.mark.asyncio
    async def test_backoff_delays(self) -> None:
        """Retries sleep base, base*1.5, ... capped at backoff_max."""
        signer = ScriptedSigner(timeout(), timeout(), timeout(), "HASH")
        client = make_client(signer, max_attempts=4, backoff_base=1.0, backoff_max=2.0)

        with patch("feeder.src.SubmissionClient.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await client.submit(TX) == "HASH"

        assert [call.args[0] for call in sleep.await_args_list] == [1.0, 1.5, 2.0]

    @pytest.mark.asyncio
    async def test_concurrent_submissions_use_distinct_sequences(self) -> None:
        """The lock serializes submissions on one account."""
        signer = ScriptedSigner("A", "B", "C")
        client = make_client(signer)

        hashes = await asyncio.gather(*(client.submit(TX) for _ in range(3)))

        assert sorted(hashes) == ["A", "B", "C"]
        assert signer.sequences == [7, 8, 9]
