"""
EVM block indexer package.

Crawls an EVM-compatible node over JSON-RPC and persists normalized
transaction receipts with a per-chain checkpoint.
"""

from .block_processor import BlockProcessor
from .config import IndexerConfig
from .indexer import BlockIndexer
from .models import Block, Checkpoint, RawReceipt, TransactionRecord
from .sync_controller import SyncController, SyncState

__all__ = [
    "Block",
    "BlockIndexer",
    "BlockProcessor",
    "Checkpoint",
    "IndexerConfig",
    "RawReceipt",
    "SyncController",
    "SyncState",
    "TransactionRecord",
]
__version__ = "0.1.0"
