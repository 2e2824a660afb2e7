#!/usr/bin/env python3
"""Block processing for the indexer.

This module turns one fetched block into committed state: it fetches every
receipt of the block, normalizes and orders them, writes the records, and
only then advances the chain checkpoint.
"""

import asyncio
import logging
from typing import TYPE_CHECKING

from .models import Block, TransactionRecord
from .receipt_normalizer import normalize_receipt

if TYPE_CHECKING:
    from .storage import CheckpointStore, TransactionStore
    from .utils.rpc_client import RpcClient

# Get logger for this module
logger = logging.getLogger(__name__)


class BlockProcessor:
    """Commits the transactions of a block and advances the checkpoint.

    A block is either fully committed (records and checkpoint) or not at
    all. Any failure while fetching receipts or writing propagates to the
    caller with the checkpoint untouched, and the block can be retried in
    full because every write is an idempotent upsert.
    """

    def __init__(
        self,
        rpc_client: "RpcClient",
        transaction_store: "TransactionStore",
        checkpoint_store: "CheckpointStore",
        chain_id: int,
    ) -> None:
        """Initialize the BlockProcessor.

        Args:
            rpc_client: Client used to fetch receipts
            transaction_store: Store receiving the normalized records
            checkpoint_store: Store holding the per-chain checkpoint
            chain_id: Chain the checkpoint is recorded for
        """
        self.rpc_client = rpc_client
        self.transaction_store = transaction_store
        self.checkpoint_store = checkpoint_store
        self.chain_id = chain_id

        # Metrics tracking
        self.blocks_processed = 0
        self.records_written = 0
        self.receipts_orphaned = 0

    async def process_block(self, block: Block) -> list[TransactionRecord]:
        """Fetch, normalize, order, and persist the transactions of a block.

        Args:
            block: Block fetched with full transaction objects

        Returns:
            The persisted records in canonical order

        Raises:
            NetworkError: If a receipt could not be fetched
            NotFoundError: If a receipt is not available yet
            PersistenceError: If the records or the checkpoint could not be written
        """
        receipts = await asyncio.gather(
            *(self.rpc_client.fetch_tx_receipt(tx.hash) for tx in block.transactions)
        )

        transactions = {tx.hash: tx for tx in block.transactions}
        records: list[TransactionRecord] = []
        for position, receipt in enumerate(receipts):
            transaction = transactions.get(receipt.transaction_hash)
            if transaction is None:
                self.receipts_orphaned += 1
                logger.warning(
                    f"Receipt {receipt.transaction_hash} has no matching transaction "
                    f"in block {block.number}, storing without input/value"
                )
            records.append(
                normalize_receipt(
                    receipt,
                    transaction,
                    block_number=block.number,
                    transaction_index=position,
                )
            )

        records.sort(key=lambda record: record.sort_key)

        if records:
            written = await asyncio.to_thread(self.transaction_store.upsert_transactions, records)
            self.records_written += written
            logger.info(f"Block {block.number}: wrote {written} transactions")

        await asyncio.to_thread(self.checkpoint_store.advance, self.chain_id, block.number)
        self.blocks_processed += 1
        logger.debug(f"Checkpoint for chain {self.chain_id} advanced to {block.number}")

        return records

    def get_metrics(self) -> dict[str, int]:
        """Get current processing metrics."""
        return {
            "blocks_processed": self.blocks_processed,
            "records_written": self.records_written,
            "receipts_orphaned": self.receipts_orphaned,
        }

    def log_metrics(self) -> None:
        """Log current processing metrics."""
        metrics = self.get_metrics()
        logger.info(
            f"BlockProcessor Metrics: "
            f"Blocks={metrics['blocks_processed']}, "
            f"Records={metrics['records_written']}, "
            f"Orphaned receipts={metrics['receipts_orphaned']}"
        )
