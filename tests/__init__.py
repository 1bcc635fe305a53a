"""
DocRegistry Test Suite.

This package contains:
- unit/: Unit tests (in-memory ledger, no filesystem beyond temp dirs)
- integration/: Contracts and CLI end-to-end over the in-memory and SQLite ledgers
"""
