"""HttpSigner: Signer backed by an external signing daemon."""

import json
import logging
from typing import Any

import cbor2
import httpx

from .base import Signer, SubmitError, SubmitErrorKind

logger = logging.getLogger(__name__)

# Cosmos SDK ErrWrongSequence
CODE_WRONG_SEQUENCE = 32


class HttpSigner(Signer):
    """Signer implementation talking to a signing daemon over HTTP.

    The daemon is reached over HTTP(S) or, when ``url`` is a filesystem
    path, over a Unix domain socket.

    :cvar SIGN_PATH: Endpoint accepting unsigned tx bodies.
    :ivar url: HTTP URL or socket path of the daemon.
    :ivar timeout: Request timeout in seconds.
    """

    SIGN_PATH = "/v1/tx/sign-broadcast"

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the signer.

        :param url: HTTP URL or Unix socket path of the daemon.
        :param timeout: Request timeout (default: 30.0).
        :param transport: Optional transport override.
        """
        self.url = url
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _build_transport(self) -> httpx.AsyncBaseTransport | None:
        """Build HTTP transport for daemon requests."""
        if self._transport is not None:
            return self._transport
        if not self.url.startswith("http"):
            logger.debug("Using unix domain socket: %s", self.url)
            return httpx.AsyncHTTPTransport(uds=self.url)
        return None

    @property
    def base_url(self) -> str:
        return self.url.rstrip("/") if self.url.startswith("http") else "http://localhost"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                transport=self._build_transport(), timeout=self.timeout
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def sign_and_broadcast(
        self, tx_body: dict[str, Any], network_id: str, sequence: int
    ) -> str:
        """Submit a tx body via the daemon's sign-broadcast endpoint.

        :param tx_body: Unsigned tx body.
        :param network_id: Configured network the tx is for.
        :param sequence: Account sequence to sign with.
        :returns: Transaction hash.
        :raises SubmitError: TIMEOUT on transport errors, 408 and 5xx;
            SEQUENCE_MISMATCH on a wrong sequence; REJECTED otherwise.
        """
        payload = {"network_id": network_id, "sequence": sequence, "tx": tx_body}
        logger.debug("POST %s payload=%s", self.SIGN_PATH, json.dumps(payload))

        try:
            response = await self._get_client().post(
                self.base_url + self.SIGN_PATH, json=payload
            )
        except httpx.TimeoutException as e:
            raise SubmitError(SubmitErrorKind.TIMEOUT, f"Signer timeout: {e}") from e
        except httpx.RequestError as e:
            raise SubmitError(SubmitErrorKind.TIMEOUT, f"Signer unreachable: {e}") from e

        logger.debug("Response: %s %s", response.status_code, response.reason_phrase)
        if response.status_code == 408 or response.status_code >= 500:
            raise SubmitError(
                SubmitErrorKind.TIMEOUT,
                f"Signer returned {response.status_code}: {response.text[:200]}",
            )
        if not response.is_success:
            raise SubmitError(
                SubmitErrorKind.REJECTED,
                f"Signer returned {response.status_code}: {response.text[:200]}",
            )

        try:
            result = response.json()
        except ValueError as e:
            raise SubmitError(
                SubmitErrorKind.REJECTED, f"Invalid signer response: {e}"
            ) from e

        if not isinstance(result, dict):
            raise SubmitError(
                SubmitErrorKind.REJECTED, f"Invalid signer response: {result!r:.200}"
            )

        try:
            code = int(result.get("code") or 0)
        except (TypeError, ValueError) as e:
            raise SubmitError(
                SubmitErrorKind.REJECTED, f"Invalid code in signer response: {e}"
            ) from e
        log = str(result.get("log") or "")

        data = result.get("data")
        if data:
            try:
                result["data"] = cbor2.loads(bytes.fromhex(data))
            except (TypeError, ValueError, cbor2.CBORDecodeError) as e:
                # The tx was broadcast; only its result payload is unreadable
                logger.warning("Undecodable signer data %.64r: %s", data, e)
                result["data"] = None

        if code == CODE_WRONG_SEQUENCE:
            raise SubmitError(SubmitErrorKind.SEQUENCE_MISMATCH, log or "incorrect account sequence")
        if code != 0:
            raise SubmitError(SubmitErrorKind.REJECTED, f"code {code}: {log}")

        tx_hash = result.get("tx_hash")
        if not tx_hash:
            raise SubmitError(SubmitErrorKind.REJECTED, "Signer response has no tx_hash")
        logger.debug("Broadcast tx %s data=%s", tx_hash, result.get("data"))
        return tx_hash
