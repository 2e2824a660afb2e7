#!/usr/bin/env python3
"""Tests for the JSON-RPC client.

Requests are served by an httpx.MockTransport so the wire format can be
inspected without a node.
"""

import json

import httpx
import pytest

from evm_indexer.exceptions import NetworkError, NotFoundError, RpcError
from evm_indexer.utils.rpc_client import RpcClient

RPC_URL = "http://node.test:8545"

BLOCK_RESULT = {
    "number": "0x65",
    "hash": "0x" + "12" * 32,
    "transactions": [{"hash": "0x" + "aa" * 32, "input": "0x", "value": "0x0"}],
}

RECEIPT_RESULT = {
    "transactionHash": "0x" + "aa" * 32,
    "blockNumber": "0x65",
    "transactionIndex": "0x0",
    "from": "0x5aaeb6053f3e94c9b9a09f33669435e7ef1beaed",
    "to": None,
    "contractAddress": None,
    "status": "0x1",
    "logs": [],
}


class FakeNode:
    """Records JSON-RPC requests and answers them from a method table."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.requests: list[dict] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        self.requests.append(payload)
        response = self.responses[payload["method"]]
        if isinstance(response, httpx.Response):
            return response
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": payload["id"], **response})

    def methods(self) -> list[str]:
        return [request["method"] for request in self.requests]


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def make_client(node: FakeNode, clock=None) -> RpcClient:
    return RpcClient(
        RPC_URL,
        clock=clock or FakeClock(),
        transport=httpx.MockTransport(node.handler),
    )


class TestRequestFraming:
    """Tests for the JSON-RPC envelope."""

    @pytest.mark.asyncio
    async def test_envelope_and_incrementing_ids(self):
        node = FakeNode({"eth_blockNumber": {"result": "0x10"}})
        async with make_client(node) as client:
            await client.block_number(force_refresh=True)
            await client.block_number(force_refresh=True)

        first, second = node.requests
        assert first == {"method": "eth_blockNumber", "params": [], "id": 1, "jsonrpc": "2.0"}
        assert second["id"] == 2

    @pytest.mark.asyncio
    async def test_block_number_sent_as_hex(self):
        node = FakeNode({"eth_getBlockByNumber": {"result": BLOCK_RESULT}})
        async with make_client(node) as client:
            block = await client.fetch_block(101)

        assert node.requests[0]["params"] == ["0x65", True]
        assert block.number == 101
        assert block.transactions[0].hash == "0x" + "aa" * 32

    @pytest.mark.asyncio
    async def test_error_object_raises_rpc_error(self):
        node = FakeNode({
            "eth_getBlockByNumber": {"error": {"code": -32000, "message": "header not found"}}
        })
        async with make_client(node) as client:
            with pytest.raises(RpcError, match="header not found") as exc_info:
                await client.fetch_block(1)

        assert exc_info.value.code == -32000
        assert isinstance(exc_info.value, NetworkError)

    @pytest.mark.asyncio
    async def test_http_error_raises_network_error(self):
        node = FakeNode({"eth_blockNumber": httpx.Response(502, text="bad gateway")})
        async with make_client(node) as client:
            with pytest.raises(NetworkError):
                await client.block_number()

    @pytest.mark.asyncio
    async def test_non_json_body_raises_network_error(self):
        node = FakeNode({"eth_blockNumber": httpx.Response(200, text="<html>oops</html>")})
        async with make_client(node) as client:
            with pytest.raises(NetworkError, match="non-JSON"):
                await client.block_number()

    @pytest.mark.asyncio
    async def test_response_without_result_raises_network_error(self):
        node = FakeNode({"eth_blockNumber": httpx.Response(200, json={"jsonrpc": "2.0"})})
        async with make_client(node) as client:
            with pytest.raises(NetworkError, match="malformed"):
                await client.block_number()

    @pytest.mark.asyncio
    async def test_connection_failure_raises_network_error(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = RpcClient(RPC_URL, transport=httpx.MockTransport(refuse))
        with pytest.raises(NetworkError, match="connection refused"):
            await client.block_number()
        await client.aclose()

    def test_requires_url(self):
        with pytest.raises(ValueError):
            RpcClient("")


class TestFetching:
    """Tests for block, receipt and transaction lookups."""

    @pytest.mark.asyncio
    async def test_unknown_block_returns_none(self):
        node = FakeNode({"eth_getBlockByNumber": {"result": None}})
        async with make_client(node) as client:
            assert await client.fetch_block(10**9) is None

    @pytest.mark.asyncio
    async def test_malformed_block_raises_network_error(self):
        node = FakeNode({"eth_getBlockByNumber": {"result": {"number": "0x1"}}})
        async with make_client(node) as client:
            with pytest.raises(NetworkError, match="Malformed block"):
                await client.fetch_block(1)

    @pytest.mark.asyncio
    async def test_fetch_receipt(self):
        node = FakeNode({"eth_getTransactionReceipt": {"result": RECEIPT_RESULT}})
        async with make_client(node) as client:
            receipt = await client.fetch_tx_receipt("0x" + "aa" * 32)

        assert node.requests[0]["params"] == ["0x" + "aa" * 32]
        assert receipt.transaction_hash == "0x" + "aa" * 32
        assert receipt.status == "0x1"

    @pytest.mark.parametrize("logs", [5, True, "0xdeadbeef", {"address": "0x01"}])
    @pytest.mark.asyncio
    async def test_receipt_with_malformed_logs_raises_network_error(self, logs):
        node = FakeNode({"eth_getTransactionReceipt": {"result": {**RECEIPT_RESULT, "logs": logs}}})
        async with make_client(node) as client:
            with pytest.raises(NetworkError, match="Receipt logs is not a list"):
                await client.fetch_tx_receipt("0x" + "aa" * 32)

    @pytest.mark.asyncio
    async def test_missing_receipt_raises_not_found(self):
        node = FakeNode({"eth_getTransactionReceipt": {"result": None}})
        async with make_client(node) as client:
            with pytest.raises(NotFoundError):
                await client.fetch_tx_receipt("0xaa")

    @pytest.mark.asyncio
    async def test_fetch_transaction(self):
        node = FakeNode({
            "eth_getTransactionByHash": {"result": {"hash": "0xaa", "input": "0x12", "value": "0x1"}}
        })
        async with make_client(node) as client:
            tx = await client.fetch_transaction("0xaa")

        assert tx.input == "0x12"
        assert tx.value == "0x1"

    @pytest.mark.asyncio
    async def test_unknown_transaction_returns_none(self):
        node = FakeNode({"eth_getTransactionByHash": {"result": None}})
        async with make_client(node) as client:
            assert await client.fetch_transaction("0xaa") is None

    @pytest.mark.asyncio
    async def test_balance_of(self):
        node = FakeNode({"eth_getBalance": {"result": "0xde0b6b3a7640000"}})
        async with make_client(node) as client:
            balance = await client.balance_of("0xabc")

        assert balance == 10**18
        assert node.requests[0]["params"] == ["0xabc", "latest"]


class TestCaching:
    """Tests for the tip and latest-block caches."""

    @pytest.mark.asyncio
    async def test_block_number_cached_within_ttl(self, clock):
        node = FakeNode({"eth_blockNumber": {"result": "0x10"}})
        async with make_client(node, clock) as client:
            assert await client.block_number() == 16
            clock.now += RpcClient.CACHE_TTL - 1
            assert await client.block_number() == 16

        assert node.methods() == ["eth_blockNumber"]

    @pytest.mark.asyncio
    async def test_block_number_refreshed_after_ttl(self, clock):
        node = FakeNode({"eth_blockNumber": {"result": "0x10"}})
        async with make_client(node, clock) as client:
            await client.block_number()
            clock.now += RpcClient.CACHE_TTL
            node.responses["eth_blockNumber"] = {"result": "0x11"}
            assert await client.block_number() == 17

        assert len(node.requests) == 2

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_cache(self, clock):
        node = FakeNode({"eth_blockNumber": {"result": "0x10"}})
        async with make_client(node, clock) as client:
            await client.block_number()
            await client.block_number(force_refresh=True)

        assert len(node.requests) == 2

    @pytest.mark.asyncio
    async def test_latest_block_cached_and_updates_tip(self, clock):
        node = FakeNode({"eth_getBlockByNumber": {"result": BLOCK_RESULT}})
        async with make_client(node, clock) as client:
            first = await client.fetch_latest_block()
            second = await client.fetch_latest_block()

            assert first is second
            assert node.requests[0]["params"] == ["latest", True]
            assert len(node.requests) == 1
            # Tip is served from the latest block without an extra call
            assert await client.block_number() == 101
            assert len(node.requests) == 1

    @pytest.mark.asyncio
    async def test_missing_latest_block_raises_not_found(self):
        node = FakeNode({"eth_getBlockByNumber": {"result": None}})
        async with make_client(node) as client:
            with pytest.raises(NotFoundError):
                await client.fetch_latest_block()
