#!/usr/bin/env python3
"""Data models for the block indexer.

This module provides immutable data classes for the blocks and receipts
fetched from the node, and for the canonical records persisted by the
indexer.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .exceptions import DataError


def parse_quantity(value: Any) -> int:
    """Parse a JSON-RPC quantity (hex string or int) as an integer.

    :param value: Quantity as returned by the node
    :return: Integer value
    :raises DataError: If the value is missing or not a valid quantity
    """
    match value:
        case bool():
            raise DataError(f"Invalid quantity: {value!r}")
        case int():
            return value
        case str() if value.startswith(("0x", "0X")):
            try:
                return int(value, 16)
            except ValueError:
                raise DataError(f"Invalid hex quantity: {value!r}") from None
        case str() if value.isdigit():
            return int(value)
        case _:
            raise DataError(f"Invalid quantity: {value!r}")


@dataclass(frozen=True, slots=True)
class BlockTransaction:
    """A transaction as embedded in a full block.

    Attributes:
        hash: Transaction hash (with 0x prefix)
        input: Call data as reported by the node
        value: Transferred value as reported by the node (hex quantity)
    """

    hash: str
    input: str
    value: str

    @classmethod
    def from_rpc(cls, data: Mapping[str, Any]) -> "BlockTransaction":
        """Build from an `eth_getBlockByNumber` transaction object."""
        tx_hash = data.get("hash")
        if not isinstance(tx_hash, str) or not tx_hash:
            raise DataError(f"Transaction without hash: {data!r}")
        return cls(
            hash=tx_hash,
            input=str(data.get("input") or ""),
            value=str(data.get("value") or ""),
        )


@dataclass(frozen=True, slots=True)
class Block:
    """A block fetched with full transaction objects.

    Attributes:
        number: Block number
        hash: Block hash (with 0x prefix)
        transactions: Transactions in node order
    """

    number: int
    hash: str
    transactions: tuple[BlockTransaction, ...] = ()

    def __str__(self) -> str:
        """Human-readable string representation."""
        return (
            f"Block(number={self.number}, "
            f"hash={self.hash[:10]}..., "
            f"txs={len(self.transactions)})"
        )

    @classmethod
    def from_rpc(cls, data: Mapping[str, Any]) -> "Block":
        """Build from an `eth_getBlockByNumber` result.

        :raises DataError: If number, hash or transactions are unusable
        """
        block_hash = data.get("hash")
        if not isinstance(block_hash, str) or not block_hash:
            raise DataError("Block without hash")

        transactions = data.get("transactions") or []
        if not isinstance(transactions, list):
            raise DataError("Block transactions is not a list")

        parsed: list[BlockTransaction] = []
        for tx in transactions:
            # Blocks fetched without full objects only carry hashes
            if isinstance(tx, str):
                parsed.append(BlockTransaction(hash=tx, input="", value=""))
            elif isinstance(tx, Mapping):
                parsed.append(BlockTransaction.from_rpc(tx))
            else:
                raise DataError(f"Unexpected transaction entry: {tx!r}")

        return cls(
            number=parse_quantity(data.get("number")),
            hash=block_hash,
            transactions=tuple(parsed),
        )


@dataclass(frozen=True, slots=True)
class ReceiptLog:
    """A log entry of a receipt. Only the emitter is kept."""

    address: str | None


@dataclass(frozen=True, slots=True)
class RawReceipt:
    """A transaction receipt as reported by the node.

    Quantities are kept raw so that normalization can decide how to degrade
    malformed values.
    """

    transaction_hash: str
    block_number: Any
    transaction_index: Any
    from_address: Any
    to_address: Any
    contract_address: Any
    status: Any
    logs: tuple[ReceiptLog, ...] = ()

    @classmethod
    def from_rpc(cls, data: Mapping[str, Any]) -> "RawReceipt":
        """Build from an `eth_getTransactionReceipt` result.

        :raises DataError: If the receipt has no transaction hash or its logs are not a list
        """
        tx_hash = data.get("transactionHash")
        if not isinstance(tx_hash, str) or not tx_hash:
            raise DataError("Receipt without transactionHash")

        raw_logs = data.get("logs") or []
        if not isinstance(raw_logs, list):
            raise DataError("Receipt logs is not a list")
        logs = tuple(
            ReceiptLog(address=log.get("address") if isinstance(log, Mapping) else None)
            for log in raw_logs
        )

        return cls(
            transaction_hash=tx_hash,
            block_number=data.get("blockNumber"),
            transaction_index=data.get("transactionIndex"),
            from_address=data.get("from"),
            to_address=data.get("to"),
            contract_address=data.get("contractAddress"),
            status=data.get("status"),
            logs=logs,
        )


@dataclass(frozen=True, slots=True)
class TransactionRecord:
    """Canonical, persisted representation of one transaction.

    Attributes:
        hash: Transaction hash, the unique key
        block_number: Block the transaction was included in
        transaction_index: Position of the transaction in its block
        from_address: Checksummed sender, or "" if unavailable
        to_address: Checksummed receiver, or "" for contract creation
        contract_address: Checksummed created contract, or ""
        event_emitters: Checksummed emitters of each log, in log order
        status: 1 for success, 0 for failure
        input: Call data
        value: Transferred value (hex quantity)
    """

    hash: str
    block_number: int
    transaction_index: int
    from_address: str = ""
    to_address: str = ""
    contract_address: str = ""
    event_emitters: tuple[str, ...] = ()
    status: int = 0
    input: str = ""
    value: str = ""

    @property
    def sort_key(self) -> tuple[int, int]:
        """Canonical index order."""
        return (self.block_number, self.transaction_index)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the document shape exposed to consumers."""
        return {
            "hash": self.hash,
            "blockNumber": self.block_number,
            "transactionIndex": self.transaction_index,
            "from": self.from_address,
            "to": self.to_address,
            "contractAddress": self.contract_address,
            "eventEmitters": list(self.event_emitters),
            "status": self.status,
            "input": self.input,
            "value": self.value,
        }


@dataclass(frozen=True, slots=True)
class Checkpoint:
    """Last fully-indexed block of a chain."""

    chain_id: int
    number: int
