#!/usr/bin/env python3
"""Configuration management for the block indexer.

This module provides type-safe configuration dataclasses with validation.
Configuration is loaded from environment variables with sensible defaults
where appropriate.
"""

import logging
import os
from dataclasses import dataclass, field
from typing import ClassVar
from urllib.parse import urlparse

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from .utils.retry_policy import RetryPolicy

# Get logger for this module
logger = logging.getLogger(__name__)

DEFAULT_CHAIN_ID = 39916801


def get_env_int(var_name: str, default: int) -> int:
    """Read an integer environment variable, falling back to a default when unset."""
    value = os.environ.get(var_name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Environment variable {var_name} must be an integer, got {value!r}") from None


def get_env_float(var_name: str, default: float) -> float:
    """Read a numeric environment variable that may carry a fraction."""
    value = os.environ.get(var_name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"Environment variable {var_name} must be a number, got {value!r}") from None


@dataclass(frozen=True, slots=True)
class RpcConfig:
    """Configuration for the node connection.

    Attributes:
        rpc_url: HTTP(S) JSON-RPC endpoint of the node
        request_timeout: Timeout for each RPC call in seconds
    """

    rpc_url: str
    request_timeout: float = 30.0

    def __post_init__(self) -> None:
        """Validate RPC configuration."""
        if not self.rpc_url:
            raise ValueError("RPC URL is required (RPC_URL)")

        parsed = urlparse(self.rpc_url)
        if parsed.scheme not in ('http', 'https'):
            raise ValueError(
                f"Invalid RPC URL scheme: {parsed.scheme}. "
                "Expected http or https"
            )

        if self.request_timeout <= 0:
            raise ValueError(f"Request timeout must be positive, got {self.request_timeout}")
        if self.request_timeout > 120:
            raise ValueError(f"Request timeout too long (max 120s), got {self.request_timeout}")


@dataclass(frozen=True, slots=True)
class SyncConfig:
    """Configuration for polling and catch-up."""
    chain_id: int = DEFAULT_CHAIN_ID
    polling_interval_ms: int = 10_000  # milliseconds between ticks
    batch_size: int = 12  # blocks per catch-up round
    retry_backoff: str = "fixed"
    retry_max_delay_ms: int = 300_000

    SUPPORTED_BACKOFFS: ClassVar[set[str]] = {"fixed", "exponential"}

    def __post_init__(self) -> None:
        """Validate sync configuration."""
        if self.chain_id <= 0:
            raise ValueError(f"Chain ID must be positive, got {self.chain_id}")

        if self.polling_interval_ms <= 0:
            raise ValueError(f"Polling interval must be positive, got {self.polling_interval_ms}")
        if self.polling_interval_ms > 300_000:
            raise ValueError(
                f"Polling interval too long (max 300000ms), got {self.polling_interval_ms}"
            )

        if self.batch_size <= 0:
            raise ValueError(f"Batch size must be positive, got {self.batch_size}")
        if self.batch_size > 1000:
            raise ValueError(f"Batch size too high (max 1000), got {self.batch_size}")

        if self.retry_backoff not in self.SUPPORTED_BACKOFFS:
            raise ValueError(
                f"Unsupported retry backoff: {self.retry_backoff}. "
                f"Supported: {', '.join(sorted(self.SUPPORTED_BACKOFFS))}"
            )
        if self.retry_max_delay_ms < self.polling_interval_ms:
            raise ValueError(
                f"Max retry delay ({self.retry_max_delay_ms}ms) is below "
                f"the polling interval ({self.polling_interval_ms}ms)"
            )

    @property
    def polling_interval(self) -> float:
        """Polling interval in seconds."""
        return self.polling_interval_ms / 1000

    def retry_policy(self) -> RetryPolicy:
        """Build the retry policy, starting from the polling interval."""
        return RetryPolicy(
            base_delay=self.polling_interval,
            backoff=self.retry_backoff,
            max_delay=self.retry_max_delay_ms / 1000,
        )


@dataclass(frozen=True, slots=True)
class StorageConfig:
    """Configuration for the database.

    Attributes:
        database_url: SQLAlchemy database URL
    """

    database_url: str = "sqlite:///indexer.db"

    SUPPORTED_BACKENDS: ClassVar[set[str]] = {"sqlite", "postgresql"}

    def __post_init__(self) -> None:
        """Validate storage configuration."""
        try:
            url = make_url(self.database_url)
        except ArgumentError:
            raise ValueError(f"Invalid database URL: {self.database_url}") from None

        if url.get_backend_name() not in self.SUPPORTED_BACKENDS:
            raise ValueError(
                f"Unsupported database backend: {url.get_backend_name()}. "
                f"Supported: {', '.join(sorted(self.SUPPORTED_BACKENDS))}"
            )

    @property
    def redacted_url(self) -> str:
        """Database URL with the password hidden, for logging."""
        return make_url(self.database_url).render_as_string(hide_password=True)


@dataclass(frozen=True, slots=True)
class IndexerConfig:
    """Main configuration for the block indexer.

    Attributes:
        rpc: Node connection settings
        sync: Polling and catch-up settings
        storage: Database settings
    """

    rpc: RpcConfig
    sync: SyncConfig = field(default_factory=SyncConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)

    @classmethod
    def from_env(cls) -> "IndexerConfig":
        """Load configuration from environment variables.

        Returns:
            IndexerConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        rpc_url = os.environ.get("RPC_URL", "")
        if not rpc_url:
            raise ValueError(
                "RPC_URL environment variable is required. "
                "This should be the JSON-RPC endpoint of the node to index."
            )

        rpc_config = RpcConfig(
            rpc_url=rpc_url,
            request_timeout=get_env_float("REQUEST_TIMEOUT", 30.0),
        )
        sync_config = SyncConfig(
            chain_id=get_env_int("CHAIN_ID", DEFAULT_CHAIN_ID),
            polling_interval_ms=get_env_int("POLLING_INTERVAL_MS", 10_000),
            batch_size=get_env_int("POLLING_SIZE", 12),
            retry_backoff=os.environ.get("RETRY_BACKOFF", "fixed"),
            retry_max_delay_ms=get_env_int("RETRY_MAX_DELAY_MS", 300_000),
        )

        storage_config = StorageConfig(
            database_url=os.environ.get("DATABASE_URL", "sqlite:///indexer.db"),
        )

        return cls(rpc=rpc_config, sync=sync_config, storage=storage_config)

    def log_config(self) -> None:
        """Log the configuration in a readable format for debugging."""
        logger.info("=" * 60)
        logger.info("Block Indexer Configuration")
        logger.info("=" * 60)

        logger.info("Node:")
        logger.info(f"  RPC URL: {self.rpc.rpc_url}")
        logger.info(f"  Request Timeout: {self.rpc.request_timeout} seconds")

        logger.info("Sync Settings:")
        logger.info(f"  Chain ID: {self.sync.chain_id}")
        logger.info(f"  Polling Interval: {self.sync.polling_interval_ms} ms")
        logger.info(f"  Batch Size: {self.sync.batch_size} blocks")
        logger.info(f"  Retry Backoff: {self.sync.retry_backoff}")

        logger.info("Storage:")
        logger.info(f"  Database: {self.storage.redacted_url}")

        logger.info("=" * 60)
