#!/usr/bin/env python3
"""Entry point for the EVM block indexer service.

This module provides the main entry point for the indexer that crawls
an EVM-compatible node and stores its transactions in a database.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys

# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

# Get logger for this module
logger = logging.getLogger(__name__)

from evm_indexer.config import IndexerConfig
from evm_indexer.indexer import BlockIndexer


async def main() -> None:
    """Main entry point for the block indexer service.

    Parses startup arguments, loads configuration from environment,
    and starts the indexer that continuously polls the node for blocks.

    Raises:
        SystemExit: On configuration or runtime errors
    """
    # Parse startup arguments
    parser: argparse.ArgumentParser = argparse.ArgumentParser(
        description="EVM Block Indexer - Crawl blocks and index transaction receipts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  RPC_URL              - JSON-RPC endpoint of the node (required)
  REQUEST_TIMEOUT      - RPC request timeout in seconds (default: 30)
  CHAIN_ID             - Chain the checkpoint is stored under (default: 39916801)
  POLLING_INTERVAL_MS  - Delay between polling ticks (default: 10000)
  POLLING_SIZE         - Blocks fetched per catch-up round (default: 12)
  RETRY_BACKOFF        - fixed or exponential (default: fixed)
  RETRY_MAX_DELAY_MS   - Upper bound for exponential retries (default: 300000)
  DATABASE_URL         - SQLAlchemy database URL (default: sqlite:///indexer.db)
  LOG_LEVEL            - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--reset-database",
        action="store_true",
        default=False,
        help="Drop all indexed transactions and checkpoints before starting"
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    args: argparse.Namespace = parser.parse_args()

    # Set up logging with specified level
    setup_logging(args.log_level)

    logger.info("=== EVM Block Indexer Starting ===")
    logger.info("Loading configuration from environment...")

    try:
        # Load configuration from environment
        config: IndexerConfig = IndexerConfig.from_env()
        config.log_config()
        logger.info("Configuration loaded successfully")

        indexer: BlockIndexer = BlockIndexer(config)
        if args.reset_database:
            indexer.reset_database()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, indexer.stop)

        logger.info("BlockIndexer instance created, starting main loop...")
        await indexer.run()

    except ValueError as e:
        logger.error(f"Configuration Error: {e}")
        logger.error("Please check your environment variables:")
        logger.error("  - RPC_URL: JSON-RPC endpoint of the node")
        logger.error("  - CHAIN_ID, POLLING_INTERVAL_MS, POLLING_SIZE: positive integers")
        logger.error("  - RETRY_BACKOFF: fixed or exponential")
        logger.error("  - DATABASE_URL: sqlite or postgresql URL")
        sys.exit(1)

    except KeyboardInterrupt:
        logger.info("\nReceived interrupt signal, shutting down gracefully...")
        sys.exit(0)

    except Exception as e:
        logger.error(f"Fatal Error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    # Run the main async function
    asyncio.run(main())
