"""
Error types for the DocRegistry core.

This module defines the exceptions raised by the registry:
- DocRegistryError: Base exception
- DocumentNotFoundError: Point lookup on a missing document
- RecordSerializationError: Stored bytes are not a valid record
- AuditEntryExistsError: Audit key already written
- InvalidArgumentError: Caller passed an unusable argument
- UnknownOperationError: Catalog has no such function

Host failures (put/get/scan) are raised as ledger.LedgerError and pass
through the core unchanged.

Invariants:
    - All core errors inherit from DocRegistryError
    - Errors carry a stable code for programmatic handling
    - Any error escaping a transaction block rolls the transaction back
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class DocRegistryError(Exception):
    """Base exception for all registry errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "DOCREGISTRY_ERROR"
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible error payload."""
        return {"error": self.message, "error_code": self.code, "details": self.details}


class DocumentNotFoundError(DocRegistryError):
    """No document is stored under the requested id."""

    def __init__(self, document_id: str, scope: Optional[str] = None) -> None:
        super().__init__(
            f"Document not found: {document_id}",
            code="NOT_FOUND",
            details={"document_id": document_id, "scope": scope},
        )
        self.document_id = document_id
        self.scope = scope


class RecordSerializationError(DocRegistryError):
    """Stored bytes could not be decoded into a record.

    Raised on point lookups. Range scans skip such records instead.
    """

    def __init__(self, message: str, key: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="SERIALIZATION_ERROR",
            details={"key": key},
        )
        self.key = key


class AuditEntryExistsError(DocRegistryError):
    """An audit entry already exists for this transaction.

    Audit keys are derived from the transaction id, so this means a second
    mutation was attempted inside one transaction.
    """

    def __init__(self, key: str, tx_id: str) -> None:
        super().__init__(
            f"Audit entry already exists: {key}",
            code="AUDIT_CONFLICT",
            details={"key": key, "tx_id": tx_id},
        )
        self.key = key
        self.tx_id = tx_id


class InvalidArgumentError(DocRegistryError):
    """An argument cannot be used as given."""

    def __init__(self, message: str, argument: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="INVALID_ARGUMENT",
            details={"argument": argument},
        )
        self.argument = argument


class UnknownOperationError(DocRegistryError):
    """The operation catalog has no function with this name."""

    def __init__(self, function: str, available: Optional[list[str]] = None) -> None:
        super().__init__(
            f"Unknown function: {function}",
            code="UNKNOWN_OPERATION",
            details={"function": function, "available": available or []},
        )
        self.function = function
