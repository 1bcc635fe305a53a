"""
Registry core for DocRegistry - documents, audit trail and queries.

This module handles:
- Document stores for the public and private scopes
- The append-only audit trail (one entry per mutation)
- Full-scan queries by institution, user and audit time window
- The operation catalog exposed to callers

All operations run inside a host transaction whose context is passed in
explicitly; nothing here holds ambient transaction state.

Invariants:
    - A document write and its audit entry share one transaction
    - Audit entries are never rewritten or deleted
    - Malformed records are skipped by scans and fail point lookups

How to change safely:
    - Route every new mutation through AuditTrail.record
    - Keep persisted field names stable
"""

from .audit import AuditTrail
from .catalog import (
    DocumentContract,
    PrivateDocumentContract,
    PublicDocumentContract,
    create_contracts,
)
from .documents import PRIVATE_SCHEMA, PUBLIC_SCHEMA, DocumentSchema, DocumentStore, Scope
from .errors import (
    AuditEntryExistsError,
    DocRegistryError,
    DocumentNotFoundError,
    InvalidArgumentError,
    RecordSerializationError,
    UnknownOperationError,
)
from .models import (
    AUDIT_KEY_END,
    AUDIT_KEY_PREFIX,
    AuditLogEntry,
    AuditOperation,
    PrivateDocument,
    PublicDocument,
    format_timestamp,
    parse_timestamp,
)
from .query import AuditFilter, AuditOrder, FilterType, QueryEngine, TimeWindow, iter_range

__all__ = [
    # Contracts
    "DocumentContract",
    "PublicDocumentContract",
    "PrivateDocumentContract",
    "create_contracts",
    # Stores
    "DocumentStore",
    "DocumentSchema",
    "Scope",
    "PUBLIC_SCHEMA",
    "PRIVATE_SCHEMA",
    "AuditTrail",
    # Queries
    "QueryEngine",
    "AuditFilter",
    "AuditOrder",
    "FilterType",
    "TimeWindow",
    "iter_range",
    # Records
    "PublicDocument",
    "PrivateDocument",
    "AuditLogEntry",
    "AuditOperation",
    "AUDIT_KEY_PREFIX",
    "AUDIT_KEY_END",
    "format_timestamp",
    "parse_timestamp",
    # Errors
    "DocRegistryError",
    "DocumentNotFoundError",
    "RecordSerializationError",
    "AuditEntryExistsError",
    "InvalidArgumentError",
    "UnknownOperationError",
]
