"""Shared fixtures for the indexer tests."""

import asyncio

import pytest

from evm_indexer.exceptions import NetworkError, NotFoundError
from evm_indexer.models import Block, BlockTransaction, RawReceipt, ReceiptLog
from evm_indexer.storage import CheckpointStore, Database, TransactionStore, create_db_engine

CHAIN_ID = 39916801

# EIP-55 reference addresses (lowercase input, checksummed output)
SENDER = "0x5aaeb6053f3e94c9b9a09f33669435e7ef1beaed"
SENDER_CHECKSUM = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
RECEIVER = "0xfb6916095ca1df60bb79ce92ce3ea74c37c5d359"
RECEIVER_CHECKSUM = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"
EMITTER = "0xdbf03b407c01e7cd3cbea99509d93f8dddc8c6fb"
EMITTER_CHECKSUM = "0xdbF03B407c01E7cD3CBea99509d93f8DDDC8C6FB"
CONTRACT = "0xd1220a0cf47c7b9be7a2e6ba89f429762e7b9adb"
CONTRACT_CHECKSUM = "0xD1220A0cf47c7B9Be7A2E6BA89F429762e7b9aDb"


def tx_hash(block_number: int, index: int) -> str:
    return f"0x{block_number:032x}{index:032x}"


class FakeChain:
    """In-memory stand-in for the node, with the RpcClient interface used by the indexer."""

    def __init__(self, tip: int = 0):
        self.tip = tip
        self.blocks: dict[int, Block] = {}
        self.receipts: dict[str, RawReceipt] = {}
        self.block_requests: list[int | str] = []
        self.failing_receipts: set[str] = set()
        self.fail_blocks = False
        self.gate: asyncio.Event | None = None
        self.closed = False

    def add_block(self, number: int, tx_count: int = 1) -> Block:
        """Add a block with `tx_count` transactions and a receipt for each."""
        transactions = tuple(
            BlockTransaction(hash=tx_hash(number, i), input=f"0x{i:02x}", value=hex(i * 100))
            for i in range(tx_count)
        )
        block = Block(number=number, hash=f"0x{number:064x}", transactions=transactions)
        self.blocks[number] = block
        for i, tx in enumerate(transactions):
            self.receipts[tx.hash] = RawReceipt(
                transaction_hash=tx.hash,
                block_number=hex(number),
                transaction_index=hex(i),
                from_address=SENDER,
                to_address=RECEIVER,
                contract_address=None,
                status="0x1",
                logs=(ReceiptLog(address=EMITTER),),
            )
        self.tip = max(self.tip, number)
        return block

    def add_blocks(self, first: int, last: int, tx_count: int = 1) -> None:
        for number in range(first, last + 1):
            self.add_block(number, tx_count)

    async def fetch_block(self, block_number):
        self.block_requests.append(block_number)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_blocks:
            raise NetworkError("connection refused")
        return self.blocks.get(block_number)

    async def fetch_tx_receipt(self, tx_hash):
        if tx_hash in self.failing_receipts:
            raise NetworkError(f"timeout fetching {tx_hash}")
        receipt = self.receipts.get(tx_hash)
        if receipt is None:
            raise NotFoundError(f"Receipt {tx_hash} not found")
        return receipt

    async def block_number(self, force_refresh=False):
        return self.tip

    async def aclose(self):
        self.closed = True


@pytest.fixture
def engine():
    """In-memory database with the indexer schema."""
    engine = create_db_engine("sqlite://")
    Database(engine).create_schema()
    yield engine
    engine.dispose()


@pytest.fixture
def transaction_store(engine):
    return TransactionStore(engine)


@pytest.fixture
def checkpoint_store(engine):
    return CheckpointStore(engine)


@pytest.fixture
def chain():
    return FakeChain()
