"""SubmissionClient: Retrying, sequence-aware tx submission.

Wraps a Signer with bounded exponential backoff and account sequence
tracking. Submissions for one network are serialized by a lock so two
transactions never race for the same sequence number.

Failure handling:
    - TIMEOUT: retried after backoff
    - SEQUENCE_MISMATCH: sequence refreshed from the chain, then retried
    - REJECTED: raised immediately, never retried

.. code-block:: python

    >>> client = SubmissionClient(signer, chain, "columbus", "terra1...")
    >>> await client.submit(tx_body)
    'A1B2...'
    >>> client.sequence
    8
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from .ChainClient import ChainClient, QueryError
from .signer.base import Signer, SubmitError, SubmitErrorKind

logger = logging.getLogger(__name__)

BACKOFF_FACTOR = 1.5


@dataclass(frozen=True)
class RetryState:
    """Position in the backoff schedule.

    :ivar attempt: Number of failed attempts so far.
    :ivar delay: Delay to wait if this attempt fails, in seconds.
    """

    attempt: int
    delay: float

    def next(self, backoff_max: float) -> RetryState:
        """State after one more failed attempt."""
        return RetryState(
            attempt=self.attempt + 1,
            delay=min(self.delay * BACKOFF_FACTOR, backoff_max),
        )


class SubmissionClient:
    """Submits tx bodies for one network and account.

    :ivar signer: Signer used to sign and broadcast.
    :ivar chain: Chain client used to refresh the account sequence.
    :ivar network_id: Configured network id.
    :ivar account: Feeder account address.
    :ivar max_attempts: Attempts per submit() call.
    :ivar backoff_base: First retry delay in seconds.
    :ivar backoff_max: Maximum retry delay in seconds.
    :ivar broadcast_timeout: Timeout of a single signer call.
    """

    def __init__(
        self,
        signer: Signer,
        chain: ChainClient,
        network_id: str,
        account: str,
        max_attempts: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 5.0,
        broadcast_timeout: float = 30.0,
    ) -> None:
        """Initialize the submission client.

        :raises ValueError: If the retry parameters are invalid.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if backoff_base < 0 or backoff_max < backoff_base:
            raise ValueError("backoff must satisfy 0 <= backoff_base <= backoff_max")
        if broadcast_timeout <= 0:
            raise ValueError("broadcast_timeout must be positive")

        self.signer = signer
        self.chain = chain
        self.network_id = network_id
        self.account = account
        self.max_attempts = max_attempts
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.broadcast_timeout = broadcast_timeout

        self._sequence: int | None = None
        self._lock = asyncio.Lock()

    @property
    def sequence(self) -> int | None:
        """Next sequence to sign with, or None before the first load."""
        return self._sequence

    async def _refresh_sequence(self) -> int:
        try:
            sequence = await self.chain.account_sequence(self.account)
        except QueryError as e:
            raise SubmitError(
                SubmitErrorKind.SEQUENCE_MISMATCH,
                f"Could not refresh account sequence: {e}",
            ) from e
        logger.debug(f"[{self.network_id}] Account sequence is {sequence}")
        self._sequence = sequence
        return sequence

    async def _attempt(self, tx_body: dict[str, Any]) -> str:
        sequence = self._sequence
        if sequence is None:
            sequence = await self._refresh_sequence()
        try:
            return await asyncio.wait_for(
                self.signer.sign_and_broadcast(tx_body, self.network_id, sequence),
                timeout=self.broadcast_timeout,
            )
        except asyncio.TimeoutError as e:
            raise SubmitError(
                SubmitErrorKind.TIMEOUT,
                f"Broadcast timed out after {self.broadcast_timeout}s",
            ) from e

    async def submit(self, tx_body: dict[str, Any]) -> str:
        """Sign and broadcast a tx body, retrying transient failures.

        :param tx_body: Unsigned tx body.
        :returns: Transaction hash.
        :raises SubmitError: REJECTED at once, or the last transient error
            after max_attempts.
        """
        async with self._lock:
            retry = RetryState(attempt=0, delay=self.backoff_base)
            while True:
                try:
                    tx_hash = await self._attempt(tx_body)
                except SubmitError as e:
                    if not e.transient:
                        logger.error(f"[{self.network_id}] Tx rejected: {e}")
                        raise
                    if e.kind == SubmitErrorKind.SEQUENCE_MISMATCH:
                        # Reload before the next attempt
                        self._sequence = None
                    if retry.attempt + 1 >= self.max_attempts:
                        logger.error(
                            f"[{self.network_id}] Giving up after {retry.attempt + 1} attempts: {e}"
                        )
                        raise
                    logger.warning(
                        f"[{self.network_id}] Submit failed ({e.kind.value}): {e} "
                        f"(attempt {retry.attempt + 1}/{self.max_attempts}, retrying in {retry.delay:.1f}s)"
                    )
                    await asyncio.sleep(retry.delay)
                    retry = retry.next(self.backoff_max)
                    continue

                self._sequence = (self._sequence or 0) + 1
                logger.debug(f"[{self.network_id}] Broadcast tx {tx_hash}")
                return tx_hash
