"""DryRunSigner: Signer for running without a signing daemon."""

import hashlib
import json
import logging
from typing import Any

from .base import Signer

logger = logging.getLogger(__name__)


class DryRunSigner(Signer):
    """Signer implementation that logs tx bodies instead of broadcasting.

    Returns the SHA-256 of the canonical JSON body so repeated dry runs of
    the same tx report the same hash.

    :ivar submitted: Every (network_id, sequence, tx_body) seen, in order.
    """

    def __init__(self) -> None:
        self.submitted: list[tuple[str, int, dict[str, Any]]] = []

    async def sign_and_broadcast(
        self, tx_body: dict[str, Any], network_id: str, sequence: int
    ) -> str:
        encoded = json.dumps(tx_body, sort_keys=True, separators=(",", ":"))
        tx_hash = hashlib.sha256(encoded.encode()).hexdigest().upper()
        self.submitted.append((network_id, sequence, tx_body))
        logger.info(f"[{network_id}] Dry run tx {tx_hash} (sequence {sequence}): {encoded}")
        return tx_hash
