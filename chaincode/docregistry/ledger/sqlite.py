"""
SQLite-backed ledger for single-node deployments.

This module stores the key-value state of every collection in one SQLite
database file:
- ledger_state holds the current value of each (collection, key)
- transactions records the id and timestamp of every committed transaction that wrote

Invariants:
    - One SQLite file per ledger
    - Each host transaction is one SQLite transaction (BEGIN IMMEDIATE)
    - The transactions table rejects a reused tx_id; read-only transactions leave no row
    - Keys compare with BINARY collation, i.e. in code point order

How to change safely:
    - Schema migrations must be backward compatible
    - Keep range scans page-bounded; callers resume via the bookmark
    - Use transactions for all write operations

Table schema:
    ledger_state:
        - collection TEXT ("" for the world state)
        - key TEXT
        - value BLOB
        - tx_id TEXT (last writer)
        - PRIMARY KEY (collection, key)

    transactions:
        - tx_id TEXT PRIMARY KEY
        - tx_timestamp TEXT (ISO-8601)
        - committed_at INTEGER (Unix ms)
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .base import (
    KeyValue,
    LedgerConnectionError,
    LedgerError,
    TransactionError,
)
from .memory import effective_limit, generate_tx_id

logger = logging.getLogger(__name__)


class SqliteRangeScan:
    """One page of a key range read from SQLite.

    Rows are fetched when iteration starts (at most limit + 1 of them, the
    extra row only marks the bookmark), so writes made later in the same
    transaction do not disturb an open cursor.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        collection: str,
        start_key: str,
        end_key: str,
        limit: int | None = None,
    ) -> None:
        self.collection = collection
        self.bookmark: str | None = None
        self._conn = conn
        self._start_key = start_key
        self._end_key = end_key
        self._limit = limit
        self._consumed = False

    def __aiter__(self) -> AsyncIterator[KeyValue]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[KeyValue]:
        if self._consumed:
            raise LedgerError("Range scan already consumed")
        self._consumed = True

        query = "SELECT key, value FROM ledger_state WHERE collection = ? AND key >= ?"
        params: list[Any] = [self.collection, self._start_key]
        if self._end_key:
            query += " AND key < ?"
            params.append(self._end_key)
        query += " ORDER BY key"
        if self._limit is not None:
            query += " LIMIT ?"
            params.append(self._limit + 1)

        try:
            rows = self._conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise LedgerError(f"Range scan failed: {e}") from e

        if self._limit is not None and len(rows) > self._limit:
            next_bookmark = rows[self._limit]["key"]
            rows = rows[: self._limit]
        else:
            next_bookmark = None

        for row in rows:
            yield KeyValue(collection=self.collection, key=row["key"], value=bytes(row["value"]))

        self.bookmark = next_bookmark


class SqliteTransaction:
    """TransactionContext bound to an open SQLite transaction."""

    def __init__(
        self,
        ledger: SqliteLedger,
        conn: sqlite3.Connection,
        tx_id: str,
        timestamp: datetime,
    ) -> None:
        self._ledger = ledger
        self._conn = conn
        self._tx_id = tx_id
        self._timestamp = timestamp
        self.write_count = 0

    @property
    def tx_id(self) -> str:
        return self._tx_id

    @property
    def tx_timestamp(self) -> datetime:
        return self._timestamp

    async def get_state(self, collection: str, key: str) -> bytes | None:
        try:
            row = self._conn.execute(
                "SELECT value FROM ledger_state WHERE collection = ? AND key = ?",
                (collection, key),
            ).fetchone()
        except sqlite3.Error as e:
            raise LedgerError(f"Read of {key!r} failed: {e}") from e
        return bytes(row["value"]) if row else None

    async def put_state(self, collection: str, key: str, value: bytes) -> None:
        if not key:
            raise LedgerError("Key must not be empty")
        if not isinstance(value, (bytes, bytearray)):
            raise LedgerError(f"Value for key {key!r} must be bytes")
        try:
            self._conn.execute(
                """
                INSERT OR REPLACE INTO ledger_state (collection, key, value, tx_id)
                VALUES (?, ?, ?, ?)
                """,
                (collection, key, bytes(value), self._tx_id),
            )
        except sqlite3.Error as e:
            raise LedgerError(f"Write of {key!r} failed: {e}") from e
        self.write_count += 1

    def range_scan(
        self,
        collection: str,
        start_key: str,
        end_key: str,
        limit: int | None = None,
    ) -> SqliteRangeScan:
        return SqliteRangeScan(
            self._conn,
            collection,
            start_key,
            end_key,
            limit=effective_limit(limit, self._ledger.scan_limit),
        )


class SqliteLedger:
    """Ledger stored in a single SQLite database file.

    Thread safety:
        Each transaction opens its own connection. Transactions in one
        process are serialized with an asyncio lock; across processes
        SQLite's BEGIN IMMEDIATE serializes writers.

    Example:
        >>> ledger = SqliteLedger("/var/lib/docregistry")
        >>> await ledger.connect()
        >>> async with ledger.transaction() as ctx:
        ...     await ctx.put_state("", "d1", b"{}")
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        db_filename: str = "ledger.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
        scan_limit: int | None = None,
    ) -> None:
        """Initialize the SQLite ledger.

        Args:
            data_dir: Directory for the database file
            db_filename: Database file name
            wal_mode: Enable SQLite WAL journal mode
            busy_timeout_ms: SQLite busy timeout
            scan_limit: Maximum pairs returned by a single range scan
        """
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_filename
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self.scan_limit = scan_limit
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._connected

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection to the ledger database."""
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
            )
        except sqlite3.Error as e:
            raise LedgerConnectionError(f"Cannot open ledger database {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS ledger_state (
                collection TEXT NOT NULL,
                key TEXT NOT NULL,
                value BLOB NOT NULL,
                tx_id TEXT NOT NULL,
                PRIMARY KEY (collection, key)
            );

            CREATE TABLE IF NOT EXISTS transactions (
                tx_id TEXT PRIMARY KEY,
                tx_timestamp TEXT NOT NULL,
                committed_at INTEGER NOT NULL
            );

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def connect(self) -> None:
        """Create the data directory and schema if they don't exist."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        async with self._lock:
            with self._get_connection() as conn:
                try:
                    self._create_schema(conn)
                except sqlite3.Error as e:
                    raise LedgerConnectionError(f"Cannot initialize ledger schema: {e}") from e
        self._connected = True
        logger.info(f"SQLite ledger ready: {self.db_path}")

    async def close(self) -> None:
        self._connected = False
        logger.debug("SqliteLedger closed")

    @asynccontextmanager
    async def transaction(
        self,
        tx_id: str | None = None,
        timestamp: datetime | None = None,
    ) -> AsyncIterator[SqliteTransaction]:
        """Run one host transaction as one SQLite transaction.

        Args:
            tx_id: Optional explicit transaction id
            timestamp: Optional explicit transaction timestamp

        Yields:
            SqliteTransaction for the caller to read and write through
        """
        if not self._connected:
            raise LedgerConnectionError("Not connected")

        tx_id = tx_id or generate_tx_id()
        ts = timestamp or datetime.now(timezone.utc)
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)

        async with self._lock:
            with self._get_connection() as conn:
                try:
                    conn.execute("BEGIN IMMEDIATE")
                except sqlite3.Error as e:
                    raise TransactionError(f"Cannot begin transaction {tx_id}: {e}") from e

                tx = SqliteTransaction(self, conn, tx_id, ts)
                try:
                    if conn.execute(
                        "SELECT 1 FROM transactions WHERE tx_id = ?", (tx_id,)
                    ).fetchone():
                        raise TransactionError(f"Duplicate transaction id: {tx_id}")

                    yield tx

                    try:
                        if tx.write_count:
                            conn.execute(
                                """
                                INSERT INTO transactions (tx_id, tx_timestamp, committed_at)
                                VALUES (?, ?, ?)
                                """,
                                (tx_id, ts.isoformat(), int(time.time() * 1000)),
                            )
                        conn.execute("COMMIT")
                    except sqlite3.Error as e:
                        raise TransactionError(f"Commit of {tx_id} failed: {e}") from e

                except Exception:
                    conn.execute("ROLLBACK")
                    logger.warning(
                        "Transaction rolled back",
                        extra={"tx_id": tx_id, "staged_writes": tx.write_count},
                    )
                    raise

        logger.debug(
            "Transaction committed",
            extra={"tx_id": tx_id, "writes": tx.write_count},
        )

    async def get_stats(self) -> dict[str, int]:
        """Get key and transaction counts.

        Returns:
            Dictionary with counts
        """
        with self._get_connection() as conn:
            stats = {}
            cursor = conn.execute("SELECT COUNT(*) FROM ledger_state")
            stats["keys"] = cursor.fetchone()[0]
            cursor = conn.execute("SELECT COUNT(*) FROM transactions")
            stats["transactions"] = cursor.fetchone()[0]
            return stats
