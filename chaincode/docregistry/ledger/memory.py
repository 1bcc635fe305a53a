"""
In-memory ledger implementation for testing.

This module provides a simple in-memory host ledger for:
- Unit tests
- Integration tests
- Local development without a data directory

Invariants:
    - All data is lost on process exit
    - Transactions are serialized; writes are staged and applied at commit
    - A transaction that raises leaves no trace in committed state
    - Ids of transactions that wrote are never reused

How to change safely:
    - This is test-oriented code, but it defines the reference semantics
      the SQLite ledger must match
    - Keep interface compatible with the Ledger protocol
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import hashlib
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Dict, List, Optional, Set, Tuple
import logging

from .base import (
    KeyValue,
    LedgerConnectionError,
    LedgerError,
    TransactionError,
)

logger = logging.getLogger(__name__)


def generate_tx_id() -> str:
    """Generate a transaction id shaped like a channel tx id (64 hex chars)."""
    return hashlib.sha256(uuid.uuid4().bytes).hexdigest()


def effective_limit(limit: Optional[int], scan_limit: Optional[int]) -> Optional[int]:
    """Combine a caller limit with the host iteration cap."""
    limits = [value for value in (limit, scan_limit) if value]
    return min(limits) if limits else None


class InMemoryRangeScan:
    """Range scan over a snapshot of committed plus staged writes.

    The snapshot is taken when iteration starts. The scan can be consumed
    only once.
    """

    def __init__(
        self,
        collection: str,
        loader: Callable[[], List[Tuple[str, bytes]]],
        limit: Optional[int] = None,
    ) -> None:
        self.collection = collection
        self.bookmark: Optional[str] = None
        self._loader = loader
        self._limit = limit
        self._consumed = False

    def __aiter__(self) -> AsyncIterator[KeyValue]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[KeyValue]:
        if self._consumed:
            raise LedgerError("Range scan already consumed")
        self._consumed = True

        pairs = self._loader()
        next_bookmark = None
        if self._limit is not None and len(pairs) > self._limit:
            next_bookmark = pairs[self._limit][0]
            pairs = pairs[: self._limit]

        for key, value in pairs:
            yield KeyValue(collection=self.collection, key=key, value=value)

        self.bookmark = next_bookmark


class InMemoryTransaction:
    """TransactionContext backed by an InMemoryLedger.

    Writes are staged in the transaction and become visible to other
    transactions only when the ledger commits them.
    """

    def __init__(self, ledger: InMemoryLedger, tx_id: str, timestamp: datetime) -> None:
        self._ledger = ledger
        self._tx_id = tx_id
        self._timestamp = timestamp
        self._writes: Dict[Tuple[str, str], bytes] = {}

    @property
    def tx_id(self) -> str:
        return self._tx_id

    @property
    def tx_timestamp(self) -> datetime:
        return self._timestamp

    @property
    def write_count(self) -> int:
        """Number of keys staged by this transaction."""
        return len(self._writes)

    async def get_state(self, collection: str, key: str) -> Optional[bytes]:
        staged = self._writes.get((collection, key))
        if staged is not None:
            return staged
        return self._ledger._collections.get(collection, {}).get(key)

    async def put_state(self, collection: str, key: str, value: bytes) -> None:
        if not key:
            raise LedgerError("Key must not be empty")
        if not isinstance(value, (bytes, bytearray)):
            raise LedgerError(f"Value for key {key!r} must be bytes")
        self._writes[(collection, key)] = bytes(value)

    def range_scan(
        self,
        collection: str,
        start_key: str,
        end_key: str,
        limit: Optional[int] = None,
    ) -> InMemoryRangeScan:
        return InMemoryRangeScan(
            collection,
            lambda: self._snapshot_range(collection, start_key, end_key),
            limit=effective_limit(limit, self._ledger.scan_limit),
        )

    def _snapshot_range(
        self, collection: str, start_key: str, end_key: str
    ) -> List[Tuple[str, bytes]]:
        merged = dict(self._ledger._collections.get(collection, {}))
        for (staged_collection, key), value in self._writes.items():
            if staged_collection == collection:
                merged[key] = value

        keys = sorted(
            key for key in merged if key >= start_key and (not end_key or key < end_key)
        )
        return [(key, merged[key]) for key in keys]


class InMemoryLedger:
    """In-memory implementation of the Ledger protocol.

    Attributes:
        scan_limit: Optional host iteration cap applied to every range scan

    Thread safety:
        Uses an asyncio lock held for the whole transaction, so
        transactions are serialized. Safe to use from multiple coroutines.

    Example:
        >>> ledger = InMemoryLedger()
        >>> await ledger.connect()
        >>> async with ledger.transaction() as ctx:
        ...     await ctx.put_state("", "d1", b"{}")
    """

    def __init__(
        self,
        scan_limit: Optional[int] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        """Initialize in-memory ledger.

        Args:
            scan_limit: Maximum pairs returned by a single range scan
            clock: Source of transaction timestamps (defaults to UTC now)
        """
        self.scan_limit = scan_limit
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._collections: Dict[str, Dict[str, bytes]] = defaultdict(dict)
        self._tx_ids: Set[str] = set()
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryLedger connected")

    async def close(self) -> None:
        """Close and clear all data."""
        self._connected = False
        self._collections.clear()
        self._tx_ids.clear()
        logger.debug("InMemoryLedger closed")

    @asynccontextmanager
    async def transaction(
        self,
        tx_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> AsyncIterator[InMemoryTransaction]:
        """Run a serialized transaction.

        Args:
            tx_id: Optional explicit transaction id
            timestamp: Optional explicit transaction timestamp

        Yields:
            InMemoryTransaction for the caller to read and write through
        """
        if not self._connected:
            raise LedgerConnectionError("Not connected")

        async with self._lock:
            tx_id = tx_id or generate_tx_id()
            if tx_id in self._tx_ids:
                raise TransactionError(f"Duplicate transaction id: {tx_id}")

            ts = timestamp or self._clock()
            if ts.tzinfo is None:
                ts = ts.replace(tzinfo=timezone.utc)

            tx = InMemoryTransaction(self, tx_id, ts)
            try:
                yield tx
            except Exception:
                logger.warning(
                    "Transaction rolled back",
                    extra={"tx_id": tx_id, "staged_writes": tx.write_count},
                )
                raise

            for (collection, key), value in tx._writes.items():
                self._collections[collection][key] = value
            if tx._writes:
                self._tx_ids.add(tx_id)

        logger.debug(
            "Transaction committed",
            extra={"tx_id": tx_id, "writes": tx.write_count},
        )

    # Testing helpers

    def get_committed(self, collection: str, key: str) -> Optional[bytes]:
        """Read committed bytes outside any transaction (testing helper)."""
        return self._collections.get(collection, {}).get(key)

    def put_raw(self, collection: str, key: str, value: bytes) -> None:
        """Write bytes directly into committed state (testing helper).

        Used to plant corrupt records for skip-and-continue tests.
        """
        self._collections[collection][key] = value

    def key_count(self, collection: str) -> int:
        """Number of committed keys in a collection (testing helper)."""
        return len(self._collections.get(collection, {}))

    @property
    def committed_tx_ids(self) -> Set[str]:
        """Ids of committed transactions that wrote (testing helper)."""
        return set(self._tx_ids)
