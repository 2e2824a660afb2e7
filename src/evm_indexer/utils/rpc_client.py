import itertools
import json
import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from ..exceptions import DataError, NetworkError, NotFoundError, RpcError
from ..models import Block, BlockTransaction, RawReceipt, parse_quantity

logger = logging.getLogger(__name__)


class RpcClient:
    """JSON-RPC client for an EVM node.

    All calls share one HTTP connection pool and one request framing. Tip
    height and latest block contents are cached for CACHE_TTL seconds.
    """

    CACHE_TTL: float = 10.0

    def __init__(
        self,
        rpc_url: str,
        request_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the RPC client.

        Args:
            rpc_url: HTTP(S) endpoint of the node
            request_timeout: Timeout for each call in seconds
            clock: Monotonic time source used for the caches
            transport: Optional httpx transport (used by tests)
        """
        if not rpc_url:
            raise ValueError("RPC URL is required")

        self.rpc_url: str = rpc_url
        self.request_timeout: float = request_timeout
        self._clock = clock
        self._ids = itertools.count(1)
        self._client = httpx.AsyncClient(transport=transport, timeout=request_timeout)

        self.current_block_height: int = 0
        self.block_height_updated_at: float | None = None
        self.latest_block: Block | None = None
        self.block_contents_updated_at: float | None = None

    async def __aenter__(self) -> "RpcClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Release the underlying HTTP connection pool."""
        await self._client.aclose()

    async def _send(self, method: str, params: list[Any]) -> Any:
        """Send a JSON-RPC request and return its result.

        Args:
            method: JSON-RPC method name
            params: Positional parameters

        Returns:
            The `result` member of the response (may be None)

        Raises:
            NetworkError: If the node is unreachable or the response is malformed
            RpcError: If the node answered with an error object
        """
        payload: dict[str, Any] = {
            "method": method,
            "params": params,
            "id": next(self._ids),
            "jsonrpc": "2.0",
        }
        logger.debug(f"RPC send: {json.dumps(payload)}")

        try:
            response: httpx.Response = await self._client.post(self.rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise NetworkError(f"{method} failed: {e}") from e
        except ValueError as e:
            raise NetworkError(f"{method} returned a non-JSON body") from e

        match body:
            case {"error": {"code": code, "message": message}}:
                raise RpcError(f"{method} error {code}: {message}", code=code)
            case {"error": error} if error is not None:
                raise RpcError(f"{method} error: {error}")
            case {"result": result}:
                return result
            case _:
                raise NetworkError(f"{method} returned a malformed response: {body!r}")

    def _is_fresh(self, updated_at: float | None) -> bool:
        return updated_at is not None and self._clock() - updated_at < self.CACHE_TTL

    def _parse_block(self, result: Any, tag: int | str) -> Block:
        if not isinstance(result, dict):
            raise NetworkError(f"Malformed block {tag}: {result!r}")
        try:
            return Block.from_rpc(result)
        except DataError as e:
            raise NetworkError(f"Malformed block {tag}: {e}") from e

    async def fetch_block(self, block_number: int | str) -> Block | None:
        """Fetch a block with full transaction objects.

        Args:
            block_number: Block number, or a tag such as "latest"

        Returns:
            The block, or None if the node has not produced it yet
        """
        tag = hex(block_number) if isinstance(block_number, int) else block_number
        result = await self._send("eth_getBlockByNumber", [tag, True])
        if result is None:
            return None
        return self._parse_block(result, block_number)

    async def fetch_latest_block(self, force_refresh: bool = False) -> Block:
        """Fetch the latest block, served from cache for up to CACHE_TTL seconds.

        Raises:
            NotFoundError: If the node reports no latest block
        """
        if not force_refresh and self.latest_block and self._is_fresh(self.block_contents_updated_at):
            return self.latest_block

        block = await self.fetch_block("latest")
        if block is None:
            raise NotFoundError("Node returned no latest block")

        now = self._clock()
        self.latest_block = block
        self.current_block_height = block.number
        self.block_height_updated_at = now
        self.block_contents_updated_at = now
        return block

    async def fetch_tx_receipt(self, tx_hash: str) -> RawReceipt:
        """Fetch a transaction receipt.

        Raises:
            NotFoundError: If the node has no receipt for the hash yet
            NetworkError: If the receipt is malformed
        """
        result = await self._send("eth_getTransactionReceipt", [tx_hash])
        if result is None:
            raise NotFoundError(f"Receipt {tx_hash} not found")
        if not isinstance(result, dict):
            raise NetworkError(f"Malformed receipt {tx_hash}: {result!r}")
        try:
            return RawReceipt.from_rpc(result)
        except DataError as e:
            raise NetworkError(f"Malformed receipt {tx_hash}: {e}") from e

    async def fetch_transaction(self, tx_hash: str) -> BlockTransaction | None:
        """Fetch a single transaction by hash, or None if unknown."""
        result = await self._send("eth_getTransactionByHash", [tx_hash])
        if result is None:
            return None
        if not isinstance(result, dict):
            raise NetworkError(f"Malformed transaction {tx_hash}: {result!r}")
        try:
            return BlockTransaction.from_rpc(result)
        except DataError as e:
            raise NetworkError(f"Malformed transaction {tx_hash}: {e}") from e

    async def block_number(self, force_refresh: bool = False) -> int:
        """Return the chain tip, served from cache for up to CACHE_TTL seconds."""
        if not force_refresh and self._is_fresh(self.block_height_updated_at):
            return self.current_block_height

        result = await self._send("eth_blockNumber", [])
        try:
            height = parse_quantity(result)
        except DataError as e:
            raise NetworkError(f"Malformed block number: {e}") from e

        self.current_block_height = height
        self.block_height_updated_at = self._clock()
        return height

    async def balance_of(self, address: str) -> int:
        """Return the balance of an address at the latest block, in wei."""
        result = await self._send("eth_getBalance", [address, "latest"])
        try:
            return parse_quantity(result)
        except DataError as e:
            raise NetworkError(f"Malformed balance for {address}: {e}") from e
