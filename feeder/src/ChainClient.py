"""ChainClient: Block height and account queries against a node."""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class QueryError(Exception):
    """Raised when a chain query fails."""


class ChainClient:
    """Queries a node's Tendermint RPC and LCD endpoints.

    :ivar rpc_url: Tendermint RPC base URL.
    :ivar lcd_url: LCD (REST) base URL.
    :ivar timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        rpc_url: str,
        lcd_url: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.rpc_url = rpc_url.rstrip("/")
        self.lcd_url = lcd_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                transport=self._transport, timeout=self.timeout
            )
        return self._client

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _get_json(self, url: str) -> Any:
        try:
            response = await self._get_client().get(url)
        except httpx.RequestError as e:
            raise QueryError(f"GET {url} failed: {e}") from e
        if not response.is_success:
            raise QueryError(
                f"GET {url} returned {response.status_code}: {response.text[:200]}"
            )
        try:
            return response.json()
        except ValueError as e:
            raise QueryError(f"GET {url} returned invalid JSON: {e}") from e

    async def current_height(self) -> int:
        """Fetch the latest block height.

        :returns: Latest committed height.
        :raises QueryError: On transport, HTTP or parse failure.
        """
        data = await self._get_json(f"{self.rpc_url}/status")
        try:
            return int(data["result"]["sync_info"]["latest_block_height"])
        except (KeyError, TypeError, ValueError) as e:
            raise QueryError(f"Unexpected /status response: {e}") from e

    async def account_sequence(self, address: str) -> int:
        """Fetch the next sequence number of an account.

        :param address: Account address (bech32).
        :returns: Account sequence.
        :raises QueryError: On transport, HTTP or parse failure.
        """
        data = await self._get_json(
            f"{self.lcd_url}/cosmos/auth/v1beta1/accounts/{address}"
        )
        try:
            account = data["account"]
            # Vesting accounts wrap the base account
            for wrapper in ("base_vesting_account", "base_account"):
                if "sequence" not in account and wrapper in account:
                    account = account[wrapper]
            return int(account.get("sequence") or 0)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise QueryError(f"Unexpected account response for {address}: {e}") from e
