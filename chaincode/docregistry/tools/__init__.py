"""
CLI tools for DocRegistry administration.

This module provides command-line tools for:
- invoke: Run catalog functions against a local ledger
- audit: Inspect the audit trail

Invariants:
    - Tools work offline (no running server required)
    - Every command runs in one ledger transaction
"""

from .ledger_cli import LedgerCLI, main, setup_logging

__all__ = ["LedgerCLI", "main", "setup_logging"]
