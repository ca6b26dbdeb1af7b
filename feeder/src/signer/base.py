"""Signer: Abstract interface to the key-holding tx signer/broadcaster."""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any


class SubmitErrorKind(str, Enum):
    """Classification of a failed submission."""

    TIMEOUT = "timeout"
    SEQUENCE_MISMATCH = "sequence_mismatch"
    REJECTED = "rejected"


class SubmitError(Exception):
    """Raised when a transaction could not be signed or broadcast.

    :ivar kind: Classification of the failure.
    """

    def __init__(self, kind: SubmitErrorKind, message: str):
        self.kind = kind
        super().__init__(message)

    @property
    def transient(self) -> bool:
        """Whether the submission may succeed if retried."""
        return self.kind != SubmitErrorKind.REJECTED


class Signer(ABC):
    """Abstract base class for signer implementations.

    The signer owns the feeder's key material; the feeder only hands it
    unsigned tx bodies and the account sequence to sign with.
    """

    @abstractmethod
    async def sign_and_broadcast(
        self, tx_body: dict[str, Any], network_id: str, sequence: int
    ) -> str:
        """Sign a tx body and broadcast it.

        :param tx_body: Unsigned tx body.
        :param network_id: Configured network the tx is for.
        :param sequence: Account sequence to sign with.
        :returns: Transaction hash.
        :raises SubmitError: On any failure.
        """

    async def aclose(self) -> None:
        """Release any resources held by the signer."""
