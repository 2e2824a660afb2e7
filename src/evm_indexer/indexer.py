import asyncio
import logging

from .block_processor import BlockProcessor
from .config import IndexerConfig
from .storage import CheckpointStore, Database, TransactionStore, create_db_engine
from .sync_controller import SyncController
from .utils.rpc_client import RpcClient

# Get logger for this module
logger = logging.getLogger(__name__)


class BlockIndexer:
    """
    Block indexer that crawls an EVM node and persists its transactions.

    Wires the RPC client, the stores, the block processor and the sync
    controller from one configuration object, and owns the shutdown signal.
    """

    def __init__(self, config: IndexerConfig, rpc_client: RpcClient | None = None) -> None:
        """
        Initialize the BlockIndexer with configuration.

        :param config: Indexer configuration object
        :param rpc_client: Optional pre-built RPC client (used by tests)
        """
        self.config = config
        self.chain_id = config.sync.chain_id

        logger.debug("Initializing database...")
        self.database = Database(create_db_engine(config.storage.database_url))
        self.database.create_schema()
        self.transaction_store = TransactionStore(self.database.engine)
        self.checkpoint_store = CheckpointStore(self.database.engine)

        logger.debug(f"Connecting to node at {config.rpc.rpc_url}")
        self.rpc_client = rpc_client or RpcClient(
            config.rpc.rpc_url,
            request_timeout=config.rpc.request_timeout,
        )

        self.block_processor = BlockProcessor(
            rpc_client=self.rpc_client,
            transaction_store=self.transaction_store,
            checkpoint_store=self.checkpoint_store,
            chain_id=self.chain_id,
        )
        self.controller = SyncController(
            rpc_client=self.rpc_client,
            block_processor=self.block_processor,
            checkpoint_store=self.checkpoint_store,
            chain_id=self.chain_id,
            polling_interval=config.sync.polling_interval,
            batch_size=config.sync.batch_size,
            retry_policy=config.sync.retry_policy(),
        )

        self.shutdown_event = asyncio.Event()
        logger.info(f"BlockIndexer initialized (chain: {self.chain_id})")

    @classmethod
    def from_env(cls) -> "BlockIndexer":
        """
        Create a BlockIndexer from environment variables.

        :raises ValueError: If required environment variables are missing
        """
        config = IndexerConfig.from_env()
        config.log_config()
        return cls(config)

    def reset_database(self) -> None:
        """Drop every indexed transaction and checkpoint."""
        self.database.reset()

    async def run(self) -> None:
        """
        Main entry point for the BlockIndexer.
        Runs the sync controller until stop() is called.
        """
        checkpoint = self.checkpoint_store.get(self.chain_id)
        logger.info(
            f"Starting BlockIndexer from block "
            f"{(checkpoint.number if checkpoint else 0) + 1}"
        )

        try:
            await self.controller.run(self.shutdown_event)
        finally:
            logger.info("Cleaning up...")
            self.block_processor.log_metrics()
            await self.rpc_client.aclose()
            self.database.dispose()
            logger.info("BlockIndexer stopped")

    def stop(self) -> None:
        """Request a graceful shutdown."""
        logger.info("Shutting down BlockIndexer...")
        self.shutdown_event.set()
