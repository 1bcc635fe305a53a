"""
Base protocol and types for the host ledger abstraction.

The registry core never talks to a concrete store. It receives a
TransactionContext from the host and uses only:
- get_state / put_state on a (collection, key) pair
- range_scan over a lexicographic key range
- the transaction id and transaction timestamp

Invariants:
    - All writes of one transaction commit together or not at all
    - Writes are visible to later reads in the same transaction
    - tx_id is unique per transaction
    - tx_timestamp is fixed for the lifetime of the transaction
    - A RangeScan yields keys in ascending order and can be consumed once

How to change safely:
    - Protocol changes require updating every ledger implementation
    - Keep range_scan lazy; callers resume through the bookmark
    - Never expose wall-clock time through tx_timestamp
"""

from __future__ import annotations

from abc import abstractmethod
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from datetime import datetime
from typing import (
    TYPE_CHECKING,
    AsyncIterator,
    Optional,
    Protocol,
    runtime_checkable,
)
import logging

if TYPE_CHECKING:
    from ..config import RegistryConfig

logger = logging.getLogger(__name__)

# The world state of a channel; private data lives in named collections.
WORLD_STATE = ""


class LedgerError(Exception):
    """Base exception for host ledger operations."""
    pass


class LedgerConnectionError(LedgerError):
    """Ledger is not connected or the backing store is unavailable."""
    pass


class TransactionError(LedgerError):
    """Transaction could not be committed or rolled back."""
    pass


@dataclass(frozen=True)
class KeyValue:
    """A single (key, value) pair produced by a range scan.

    Attributes:
        collection: Collection the pair was read from
        key: Ledger key
        value: Raw stored bytes
    """
    collection: str
    key: str
    value: bytes

    def __str__(self) -> str:
        return f"KeyValue(collection={self.collection!r}, key={self.key!r})"


@runtime_checkable
class RangeScan(Protocol):
    """Lazy, finite, non-restartable sequence of KeyValue pairs.

    Keys are yielded in ascending lexicographic order. Once iteration has
    finished, ``bookmark`` holds the key to resume from when the host cut
    the scan short (limit or host iteration cap), or None when the range
    is exhausted.

    Example:
        >>> scan = ctx.range_scan("collectionAuditLogs", "AUDIT_", AUDIT_END)
        >>> async for kv in scan:
        ...     handle(kv)
        >>> if scan.bookmark is not None:
        ...     scan = ctx.range_scan(collection, scan.bookmark, AUDIT_END)
    """

    bookmark: Optional[str]

    def __aiter__(self) -> AsyncIterator[KeyValue]:
        ...


@runtime_checkable
class TransactionContext(Protocol):
    """Per-transaction view of the ledger handed to every operation.

    The context is passed explicitly into each registry call; there is
    no ambient transaction state.
    """

    @property
    @abstractmethod
    def tx_id(self) -> str:
        """Unique identifier of the current transaction."""
        ...

    @property
    @abstractmethod
    def tx_timestamp(self) -> datetime:
        """Timezone-aware commit timestamp agreed for this transaction."""
        ...

    @abstractmethod
    async def get_state(self, collection: str, key: str) -> Optional[bytes]:
        """Read a key.

        Args:
            collection: Collection name (WORLD_STATE for public data)
            key: Ledger key

        Returns:
            Stored bytes, or None if the key is absent

        Raises:
            LedgerError: If the read fails
        """
        ...

    @abstractmethod
    async def put_state(self, collection: str, key: str, value: bytes) -> None:
        """Write or overwrite a key.

        Raises:
            LedgerError: If the key is empty or the write fails
        """
        ...

    @abstractmethod
    def range_scan(
        self,
        collection: str,
        start_key: str,
        end_key: str,
        limit: Optional[int] = None,
    ) -> RangeScan:
        """Scan keys in [start_key, end_key).

        An empty end_key means "to the end of the collection".

        Args:
            collection: Collection name
            start_key: Inclusive lower bound
            end_key: Exclusive upper bound ("" for unbounded)
            limit: Optional maximum number of pairs to yield

        Returns:
            RangeScan over the matching pairs
        """
        ...


@runtime_checkable
class Ledger(Protocol):
    """Protocol for host ledgers.

    A ledger hands out transactions. Everything written through a
    TransactionContext is committed when the ``transaction()`` block
    exits normally and discarded when it raises.

    Example:
        >>> ledger = InMemoryLedger()
        >>> await ledger.connect()
        >>> async with ledger.transaction() as ctx:
        ...     await contract.create_document(ctx, "d1", "BankA", "u1")
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the backing store.

        Raises:
            LedgerConnectionError: If the store is unavailable
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release resources held by the ledger."""
        ...

    @abstractmethod
    def transaction(
        self,
        tx_id: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> AbstractAsyncContextManager[TransactionContext]:
        """Open a transaction.

        Args:
            tx_id: Optional explicit transaction id (generated if omitted)
            timestamp: Optional explicit transaction timestamp

        Returns:
            Async context manager yielding the TransactionContext

        Raises:
            LedgerConnectionError: If not connected
            TransactionError: If tx_id was already used or commit fails
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether connect() has been called."""
        ...


def create_ledger(config: "RegistryConfig") -> Ledger:
    """Factory function to create a ledger from configuration.

    Args:
        config: Registry configuration

    Returns:
        Appropriate Ledger implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import LedgerBackend
    from .memory import InMemoryLedger
    from .sqlite import SqliteLedger

    scan_limit = config.scan.ledger_scan_limit or None

    if config.ledger_backend == LedgerBackend.MEMORY:
        return InMemoryLedger(scan_limit=scan_limit)
    elif config.ledger_backend == LedgerBackend.SQLITE:
        return SqliteLedger(
            data_dir=config.storage.data_dir,
            db_filename=config.storage.db_filename,
            wal_mode=config.storage.wal_mode,
            busy_timeout_ms=config.storage.busy_timeout_ms,
            scan_limit=scan_limit,
        )
    else:
        raise ValueError(f"Unsupported ledger backend: {config.ledger_backend}")
