"""Persistence for indexed transactions and per-chain checkpoints.

Both stores write through idempotent insert-or-replace statements so that a
block can be reprocessed after a crash without changing the final state.
"""

import logging
from collections.abc import Callable, Iterable, Sequence
from typing import Any

from sqlalchemy import (
    BigInteger,
    Column,
    Engine,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    case,
    create_engine,
    delete,
    func,
    or_,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from .exceptions import PersistenceError
from .models import Checkpoint, TransactionRecord

logger = logging.getLogger(__name__)

metadata = MetaData()

transactions_table = Table(
    "transactions",
    metadata,
    Column("hash", String(66), primary_key=True),
    Column("block_number", BigInteger, nullable=False),
    Column("transaction_index", Integer, nullable=False),
    Column("from_address", String(42), nullable=False, default="", index=True),
    Column("to_address", String(42), nullable=False, default="", index=True),
    Column("contract_address", String(42), nullable=False, default="", index=True),
    Column("status", Integer, nullable=False),
    Column("input", Text, nullable=False, default=""),
    Column("value", String(80), nullable=False, default=""),
    Index("ix_transactions_block_order", "block_number", "transaction_index"),
)

event_emitters_table = Table(
    "transaction_event_emitters",
    metadata,
    Column("transaction_hash", String(66), primary_key=True),
    Column("position", Integer, primary_key=True),
    Column("address", String(42), nullable=False, index=True),
)

latest_blocks_table = Table(
    "latest_blocks",
    metadata,
    Column("chain_id", BigInteger, primary_key=True),
    Column("number", BigInteger, nullable=False),
)

_RECORD_COLUMNS = (
    "block_number",
    "transaction_index",
    "from_address",
    "to_address",
    "contract_address",
    "status",
    "input",
    "value",
)


def create_db_engine(database_url: str) -> Engine:
    """Create an engine usable from worker threads.

    In-memory SQLite databases share a single connection, otherwise each
    thread would see its own empty database.
    """
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(url, pool_pre_ping=True)

    if url.database in (None, "", ":memory:"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(url, connect_args={"check_same_thread": False})


def _dialect_insert(engine: Engine) -> Callable[[Table], Any]:
    """Return the dialect-specific insert supporting ON CONFLICT."""
    match engine.dialect.name:
        case "postgresql":
            return postgresql.insert
        case "sqlite":
            return sqlite.insert
        case name:
            raise PersistenceError(f"Unsupported database dialect for upserts: {name}")


class Database:
    """Owns the engine and the schema of the indexer tables."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def create_schema(self) -> None:
        """Create missing tables and indexes."""
        try:
            metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not create schema: {e}") from e

    def reset(self) -> None:
        """Drop and recreate every indexer table. Administrative use only."""
        logger.warning("Resetting database: dropping all indexed data")
        try:
            metadata.drop_all(self.engine)
            metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not reset database: {e}") from e

    def dispose(self) -> None:
        self.engine.dispose()


class TransactionStore:
    """Hash-keyed collection of canonical transaction records."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def upsert_transactions(self, records: Sequence[TransactionRecord]) -> int:
        """Insert or replace records keyed by hash, in one database transaction.

        The event emitters of every written record are replaced as well, so
        writing the same records twice leaves identical rows.

        Returns:
            Number of records written
        """
        if not records:
            return 0

        rows = [
            {
                "hash": record.hash,
                "block_number": record.block_number,
                "transaction_index": record.transaction_index,
                "from_address": record.from_address,
                "to_address": record.to_address,
                "contract_address": record.contract_address,
                "status": record.status,
                "input": record.input,
                "value": record.value,
            }
            for record in records
        ]
        emitter_rows = [
            {"transaction_hash": record.hash, "position": position, "address": address}
            for record in records
            for position, address in enumerate(record.event_emitters)
        ]
        hashes = [record.hash for record in records]

        insert = _dialect_insert(self.engine)
        stmt = insert(transactions_table)
        stmt = stmt.on_conflict_do_update(
            index_elements=[transactions_table.c.hash],
            set_={name: stmt.excluded[name] for name in _RECORD_COLUMNS},
        )

        try:
            with self.engine.begin() as conn:
                conn.execute(stmt, rows)
                conn.execute(
                    delete(event_emitters_table).where(
                        event_emitters_table.c.transaction_hash.in_(hashes)
                    )
                )
                if emitter_rows:
                    conn.execute(event_emitters_table.insert(), emitter_rows)
        except SQLAlchemyError as e:
            logger.error(f"Error writing {len(rows)} transactions: {e}")
            raise PersistenceError(f"Could not write transactions: {e}") from e

        return len(rows)

    def get_transaction(self, tx_hash: str) -> TransactionRecord | None:
        """Return the record with the given hash, if indexed."""
        query = select(transactions_table).where(transactions_table.c.hash == tx_hash)
        records = self._fetch_records(query)
        return records[0] if records else None

    def list_block_transactions(self, block_number: int) -> list[TransactionRecord]:
        """Return the records of one block in canonical order."""
        query = (
            select(transactions_table)
            .where(transactions_table.c.block_number == block_number)
            .order_by(transactions_table.c.transaction_index)
        )
        return self._fetch_records(query)

    def find_by_address(self, address: str, limit: int = 25) -> list[TransactionRecord]:
        """Return the latest records involving an address, newest first.

        An address is involved as sender, receiver, created contract, or as
        the emitter of any log of the transaction.
        """
        emitted = select(event_emitters_table.c.transaction_hash).where(
            event_emitters_table.c.address == address
        )
        query = (
            select(transactions_table)
            .where(
                or_(
                    transactions_table.c.from_address == address,
                    transactions_table.c.to_address == address,
                    transactions_table.c.contract_address == address,
                    transactions_table.c.hash.in_(emitted),
                )
            )
            .order_by(
                transactions_table.c.block_number.desc(),
                transactions_table.c.transaction_index.desc(),
            )
            .limit(limit)
        )
        return self._fetch_records(query)

    def count(self) -> int:
        """Return the number of indexed transactions."""
        try:
            with self.engine.connect() as conn:
                return conn.execute(
                    select(func.count()).select_from(transactions_table)
                ).scalar_one()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not count transactions: {e}") from e

    def _fetch_records(self, query: Any) -> list[TransactionRecord]:
        try:
            with self.engine.connect() as conn:
                rows = conn.execute(query).mappings().all()
                emitters = self._load_emitters(conn, [row["hash"] for row in rows])
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not read transactions: {e}") from e

        return [
            TransactionRecord(
                hash=row["hash"],
                block_number=row["block_number"],
                transaction_index=row["transaction_index"],
                from_address=row["from_address"],
                to_address=row["to_address"],
                contract_address=row["contract_address"],
                event_emitters=tuple(emitters.get(row["hash"], ())),
                status=row["status"],
                input=row["input"],
                value=row["value"],
            )
            for row in rows
        ]

    @staticmethod
    def _load_emitters(conn: Any, hashes: Iterable[str]) -> dict[str, list[str]]:
        hashes = list(hashes)
        if not hashes:
            return {}
        query = (
            select(
                event_emitters_table.c.transaction_hash,
                event_emitters_table.c.address,
            )
            .where(event_emitters_table.c.transaction_hash.in_(hashes))
            .order_by(
                event_emitters_table.c.transaction_hash,
                event_emitters_table.c.position,
            )
        )
        emitters: dict[str, list[str]] = {}
        for tx_hash, address in conn.execute(query):
            emitters.setdefault(tx_hash, []).append(address)
        return emitters


class CheckpointStore:
    """One record per chain holding the last fully-indexed block."""

    def __init__(self, engine: Engine):
        self.engine = engine

    def get(self, chain_id: int) -> Checkpoint | None:
        """Return the checkpoint of a chain, or None if nothing is indexed yet."""
        query = select(latest_blocks_table.c.number).where(
            latest_blocks_table.c.chain_id == chain_id
        )
        try:
            with self.engine.connect() as conn:
                number = conn.execute(query).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise PersistenceError(f"Could not read checkpoint for chain {chain_id}: {e}") from e

        if number is None:
            return None
        return Checkpoint(chain_id=chain_id, number=number)

    def next_block(self, chain_id: int) -> int:
        """Return the number of the next block to index."""
        checkpoint = self.get(chain_id)
        return (checkpoint.number if checkpoint else 0) + 1

    def advance(self, chain_id: int, number: int) -> None:
        """Upsert the checkpoint of a chain.

        The stored number never decreases: advancing to a lower number than
        the stored one leaves it unchanged.
        """
        insert = _dialect_insert(self.engine)
        stmt = insert(latest_blocks_table).values(chain_id=chain_id, number=number)
        stmt = stmt.on_conflict_do_update(
            index_elements=[latest_blocks_table.c.chain_id],
            set_={
                "number": case(
                    (stmt.excluded.number > latest_blocks_table.c.number, stmt.excluded.number),
                    else_=latest_blocks_table.c.number,
                )
            },
        )

        try:
            with self.engine.begin() as conn:
                conn.execute(stmt)
        except SQLAlchemyError as e:
            logger.error(f"Error advancing checkpoint for chain {chain_id} to {number}: {e}")
            raise PersistenceError(f"Could not advance checkpoint: {e}") from e
