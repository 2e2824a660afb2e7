#!/usr/bin/env python3
"""Sync controller for the block indexer.

Drives the top-level loop. In POLLING state a block is fetched on every
tick; once the indexer lags the chain tip by more than one block the
controller switches to SYNCING and catches up in bounded batches before
returning to POLLING.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import TYPE_CHECKING, Any

from .exceptions import IndexerError, NotFoundError
from .models import Block
from .utils.retry_policy import RetryPolicy

if TYPE_CHECKING:
    from .block_processor import BlockProcessor
    from .storage import CheckpointStore
    from .utils.rpc_client import RpcClient

logger = logging.getLogger(__name__)


class SyncState(Enum):
    """Crawl mode of the controller."""
    POLLING = "polling"
    SYNCING = "syncing"


class SyncController:
    """
    Owns the crawl state and guarantees a single active pipeline.

    The periodic timer is the run loop's sleep between ticks, so it is
    naturally disarmed while a tick (and any catch-up it triggers) is in
    progress.
    """

    def __init__(
        self,
        rpc_client: "RpcClient",
        block_processor: "BlockProcessor",
        checkpoint_store: "CheckpointStore",
        chain_id: int,
        polling_interval: float = 10.0,
        batch_size: int = 12,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the sync controller.

        Args:
            rpc_client: Client used to fetch blocks and the chain tip
            block_processor: Commits one block at a time
            checkpoint_store: Source of the next block to index
            chain_id: Chain the checkpoint is recorded for
            polling_interval: Seconds between ticks in POLLING state
            batch_size: Maximum number of blocks fetched per catch-up round
            retry_policy: Delay policy after failed ticks (defaults to the polling interval)
            sleep: Sleep function, injectable to drive ticks deterministically
        """
        if batch_size < 1:
            raise ValueError(f"Batch size must be positive, got {batch_size}")

        self.rpc_client = rpc_client
        self.block_processor = block_processor
        self.checkpoint_store = checkpoint_store
        self.chain_id = chain_id
        self.polling_interval = polling_interval
        self.batch_size = batch_size
        self.retry_policy = retry_policy or RetryPolicy(base_delay=polling_interval)
        self._sleep = sleep

        # State tracking
        self.state = SyncState.POLLING
        self.last_tip: int | None = None
        self.consecutive_failures = 0
        self.sync_rounds = 0
        self._in_flight = False
        self._stop_event = asyncio.Event()

    async def _next_block(self) -> int:
        return await asyncio.to_thread(self.checkpoint_store.next_block, self.chain_id)

    async def _tip(self) -> int:
        self.last_tip = await self.rpc_client.block_number()
        return self.last_tip

    def _claim(self) -> bool:
        if self._in_flight:
            logger.warning("A crawl pipeline is already running, skipping")
            return False
        self._in_flight = True
        return True

    async def tick(self) -> bool:
        """
        Run one POLLING firing: index the block after the checkpoint.

        If the node has not produced that block yet the tick is a no-op.
        After a successful block the tip is compared to it, and a catch-up
        is started when the tip is more than one block ahead.

        Returns:
            True if a block was processed
        """
        if not self._claim():
            return False

        try:
            block_number = await self._next_block()
            logger.info(f"Fetching block {block_number}...")
            block = await self.rpc_client.fetch_block(block_number)

            if block is None:
                logger.debug(f"Block {block_number} not found yet")
                return False

            logger.info(f"Block {block.number} fetched: {block.hash}")
            await self.block_processor.process_block(block)

            tip = await self._tip()
            if tip - block.number > 1:
                logger.info(
                    f"Tip is {tip}. We're {tip - block.number} behind the tip. SYNC MODE ON!"
                )
                await self._catch_up()
            else:
                logger.info(f"Synced with block tip: {tip}")
            return True
        finally:
            self._in_flight = False

    async def catch_up(self) -> int:
        """
        Catch up from the checkpoint to the tip in bounded batches.

        Returns:
            Number of sync rounds run
        """
        if not self._claim():
            return 0
        try:
            return await self._catch_up()
        finally:
            self._in_flight = False

    async def sync_round(self) -> int | None:
        """
        Run a single catch-up batch starting after the checkpoint.

        Returns:
            The last block processed, or None if no block was available
        """
        if not self._claim():
            return None
        try:
            return await self._sync_round(await self._next_block(), await self._tip())
        finally:
            self._in_flight = False

    async def _catch_up(self) -> int:
        self.state = SyncState.SYNCING
        rounds = 0
        try:
            while not self._stop_event.is_set():
                next_block = await self._next_block()
                tip = await self._tip()

                if next_block > tip:
                    logger.info(f"Synced with block tip: {tip}")
                    break

                last_processed = await self._sync_round(next_block, tip)
                rounds += 1
                self.sync_rounds += 1

                if last_processed is None:
                    logger.warning("Blocks not found, leaving sync mode")
                    break
        finally:
            self.state = SyncState.POLLING
            logger.info("Sync mode off, back to polling")

        return rounds

    async def _sync_round(self, start: int, tip: int) -> int | None:
        end = min(tip, start + self.batch_size - 1)
        if end < start:
            return None

        logger.info(f"Fetching several blocks: from {start} to {end}...")
        fetched = await asyncio.gather(
            *(self.rpc_client.fetch_block(number) for number in range(start, end + 1))
        )
        blocks: list[Block] = sorted(
            (block for block in fetched if block is not None),
            key=lambda block: block.number,
        )
        if not blocks:
            return None
        logger.info(f"{len(blocks)} blocks fetched")

        # Only a contiguous prefix may advance the checkpoint
        last_processed: int | None = None
        expected = start
        for block in blocks:
            if block.number != expected:
                logger.warning(f"Block {expected} missing from batch, stopping at {last_processed}")
                break
            await self.block_processor.process_block(block)
            last_processed = block.number
            expected += 1

        return last_processed

    async def _run_tick(self) -> float:
        """Run a tick and return the delay before the next one."""
        try:
            await self.tick()
        except NotFoundError as e:
            logger.debug(f"Data not available yet, retrying next tick: {e}")
            return self.polling_interval
        except IndexerError as e:
            self.consecutive_failures += 1
            delay = self.retry_policy.delay_for(self.consecutive_failures)
            logger.error(
                f"Tick failed ({self.consecutive_failures} in a row): {e}. "
                f"Retrying in {delay}s"
            )
            return delay

        self.consecutive_failures = 0
        return self.polling_interval

    async def _wait(self, delay: float) -> bool:
        """Sleep for `delay`, returning True early if a stop was requested."""
        sleeper = asyncio.ensure_future(self._sleep(delay))
        stopper = asyncio.ensure_future(self._stop_event.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (sleeper, stopper):
                if not task.done():
                    task.cancel()
            await asyncio.gather(sleeper, stopper, return_exceptions=True)
        return self._stop_event.is_set()

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """
        Run the polling loop until a stop is requested.

        Args:
            stop_event: Event that ends the loop when set
        """
        if stop_event is not None:
            self._stop_event = stop_event

        logger.info(f"Polling: interval at {self.polling_interval}s, batch size {self.batch_size}")

        delay = self.polling_interval
        while not self._stop_event.is_set():
            if await self._wait(delay):
                break
            delay = await self._run_tick()

        logger.info("Polling stopped")

    def stop(self) -> None:
        """Request the polling loop to stop after the current step."""
        self._stop_event.set()

    def get_status(self) -> dict[str, Any]:
        """
        Get current status of the controller.

        Returns:
            Dictionary with status information
        """
        return {
            "state": self.state.value,
            "in_flight": self._in_flight,
            "last_tip": self.last_tip,
            "consecutive_failures": self.consecutive_failures,
            "sync_rounds": self.sync_rounds,
            "chain_id": self.chain_id,
        }
