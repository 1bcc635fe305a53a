"""
Host ledger abstraction for DocRegistry.

This module provides the collaborator interface the registry runs on:
- In-memory (for testing and local development)
- SQLite (durable single-node ledger)

A host ledger hands out transactions. Each transaction supplies a unique
id, a fixed timestamp, point reads/writes and ordered range scans, and
commits all of its writes atomically.

Invariants:
    - A transaction's writes commit together or not at all
    - Range scans are ordered by key and bounded by the host's scan limit
    - Transaction ids are unique and never reused

How to change safely:
    - New ledgers must implement the Ledger and TransactionContext protocols
    - Match the in-memory ledger's semantics (it is the reference)
"""

from .base import (
    WORLD_STATE,
    KeyValue,
    Ledger,
    LedgerConnectionError,
    LedgerError,
    RangeScan,
    TransactionContext,
    TransactionError,
    create_ledger,
)
from .memory import InMemoryLedger
from .sqlite import SqliteLedger

__all__ = [
    # Protocol and types
    "Ledger",
    "TransactionContext",
    "RangeScan",
    "KeyValue",
    "WORLD_STATE",
    "LedgerError",
    "LedgerConnectionError",
    "TransactionError",
    # Factory
    "create_ledger",
    # Implementations
    "InMemoryLedger",
    "SqliteLedger",
]
