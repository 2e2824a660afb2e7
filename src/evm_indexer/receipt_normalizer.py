"""Receipt normalization for the block indexer.

Turns a raw receipt and its originating transaction into the canonical
TransactionRecord. Malformed addresses degrade individually instead of
failing the whole receipt.
"""

import logging
from typing import Any

from web3 import Web3

from .exceptions import DataError
from .models import BlockTransaction, RawReceipt, TransactionRecord, parse_quantity

logger = logging.getLogger(__name__)


def to_checksum(value: Any) -> str:
    """Checksum-normalize an address.

    :raises DataError: If the value is missing or not an address
    """
    if not value:
        raise DataError("Address is missing")
    if not isinstance(value, str) or not Web3.is_address(value):
        raise DataError(f"Invalid address: {value!r}")
    return Web3.to_checksum_address(value)


def checksum_or_empty(value: Any) -> str:
    """Checksum-normalize an address, or return "" if absent or malformed."""
    try:
        return to_checksum(value)
    except DataError as e:
        if value:
            logger.warning(f"Dropping address field: {e}")
        return ""


def _parse_status(value: Any, tx_hash: str) -> int:
    try:
        return 1 if parse_quantity(value) == 1 else 0
    except DataError:
        logger.warning(f"Receipt {tx_hash[:10]}... has no usable status, recording as failed")
        return 0


def _event_emitters(receipt: RawReceipt) -> tuple[str, ...]:
    emitters: list[str] = []
    for position, log in enumerate(receipt.logs):
        try:
            emitters.append(to_checksum(log.address))
        except DataError as e:
            logger.warning(
                f"Dropping log {position} of {receipt.transaction_hash[:10]}...: {e}"
            )
    return tuple(emitters)


def _parse_position(value: Any, fallback: int | None, field: str, tx_hash: str) -> int:
    try:
        return parse_quantity(value)
    except DataError:
        if fallback is None:
            raise
        logger.warning(f"Receipt {tx_hash[:10]}... has no usable {field}, using {fallback}")
        return fallback


def normalize_receipt(
    receipt: RawReceipt,
    transaction: BlockTransaction | None,
    block_number: int | None = None,
    transaction_index: int | None = None,
) -> TransactionRecord:
    """Build the canonical record for a receipt.

    Address fields that are absent or malformed become "". Log entries
    whose address is malformed are left out of event_emitters, the rest are
    kept in order.

    :param receipt: Receipt as reported by the node
    :param transaction: The block transaction sharing the receipt's hash,
        or None if it could not be matched
    :param block_number: Used when the receipt's block number is unusable
    :param transaction_index: Used when the receipt's index is unusable
    :return: The normalized record
    :raises DataError: If the ordering key is unusable and no fallback is given
    """
    tx_hash = receipt.transaction_hash
    return TransactionRecord(
        hash=tx_hash,
        block_number=_parse_position(receipt.block_number, block_number, "blockNumber", tx_hash),
        transaction_index=_parse_position(
            receipt.transaction_index, transaction_index, "transactionIndex", tx_hash
        ),
        from_address=checksum_or_empty(receipt.from_address),
        to_address=checksum_or_empty(receipt.to_address),
        contract_address=checksum_or_empty(receipt.contract_address),
        event_emitters=_event_emitters(receipt),
        status=_parse_status(receipt.status, receipt.transaction_hash),
        input=transaction.input if transaction else "",
        value=transaction.value if transaction else "",
    )
