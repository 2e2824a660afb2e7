"""Exceptions for the block indexer."""


class IndexerError(Exception):
    """Base class for all indexer failures."""


class NetworkError(IndexerError):
    """The node is unreachable or answered with a malformed response.
    The current tick or batch step is aborted and retried later.
    The checkpoint is never advanced after this error.
    """


class RpcError(NetworkError):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, message: str, /, code: int | None = None) -> None:
        super().__init__(message)
        self.code: int | None = code


class NotFoundError(IndexerError):
    """The requested block or receipt has not been produced yet.
    This is benign and should result in rechecking on a later tick.
    """


class DataError(IndexerError):
    """A receipt field or log entry cannot be normalized.
    Callers degrade the offending field instead of failing the block.
    """


class PersistenceError(IndexerError):
    """The document or checkpoint store rejected a write or read.
    The block is aborted; retrying it in full is safe.
    """
