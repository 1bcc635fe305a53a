"""
DocRegistry - document registry with an append-only audit trail.

This package records documents on a replicated, transactional key-value
ledger and pairs every mutation with an immutable audit entry:
- Public documents (documentId, institution, userId)
- Private documents (adds name, path, hash and a free-form lifecycle state)
- Audit entries keyed by the host transaction id

Architecture:
    ┌─────────────┐     ┌──────────────────┐     ┌────────────────┐
    │   Caller    │────▶│ Operation Catalog│────▶│ Document Store │
    │ (host tx)   │     │   (contracts)    │     └───────┬────────┘
    └─────────────┘     └────────┬─────────┘             │
                                 │                       ▼
                                 │               ┌────────────────┐
                                 ├──────────────▶│  Audit Trail   │
                                 │               └───────┬────────┘
                                 ▼                       │
                        ┌──────────────────┐             │
                        │   Query Engine   │             │
                        └────────┬─────────┘             │
                                 ▼                       ▼
                        ┌─────────────────────────────────────────┐
                        │  Ledger (in-memory / SQLite host)       │
                        └─────────────────────────────────────────┘

Invariants:
    - A document write and its audit entry commit in one host transaction
    - Audit keys are AUDIT_<tx_id> and are never rewritten
    - Audit timestamps come from the host transaction, never the wall clock
    - Nothing is ever deleted

How to change safely:
    - Keep the persisted JSON field names stable (documentId, txID, ...)
    - New operations must append exactly one audit entry per mutation
    - Host-specific behavior belongs in ledger/, never in registry/
"""

from ._version import __version__

__all__ = ["__version__"]
