"""
Document store for DocRegistry.

Maps a document id to its record inside one scope. A scope pairs a
document schema with the collections holding its documents and audit
entries:
- public: PublicDocument, documents and audit entries share the world state
- private: PrivateDocument, each in its own private data collection

Invariants:
    - put_document overwrites without an existence check
    - get_document raises DocumentNotFoundError for a missing id and
      RecordSerializationError for corrupt bytes
    - scan_documents skips malformed records and, in a shared namespace,
      the audit key range
    - In a shared namespace no document id may start with the audit prefix

How to change safely:
    - New scopes are new Scope instances; don't fork the store
    - Keep the key of a document equal to its document id
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from ..ledger.base import WORLD_STATE, TransactionContext
from .errors import DocumentNotFoundError, InvalidArgumentError
from .models import (
    AUDIT_KEY_END,
    AUDIT_KEY_PREFIX,
    PrivateDocument,
    PublicDocument,
    is_audit_key,
)
from .query import iter_decoded

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentSchema:
    """Capability set of a document variant.

    Attributes:
        name: Schema name
        record_type: Record class stored under this schema
        has_state: Documents carry a lifecycle state, recorded in audit entries
    """

    name: str
    record_type: type[PublicDocument]
    has_state: bool = False


PUBLIC_SCHEMA = DocumentSchema(name="public", record_type=PublicDocument)
PRIVATE_SCHEMA = DocumentSchema(
    name="private",
    record_type=PrivateDocument,
    has_state=True,
)


@dataclass(frozen=True)
class Scope:
    """Isolation boundary: a schema plus its key namespaces.

    Attributes:
        name: Scope name (public or private)
        schema: Document schema of the scope
        documents_collection: Collection holding documents
        audit_collection: Collection holding audit entries
    """

    name: str
    schema: DocumentSchema
    documents_collection: str
    audit_collection: str

    @property
    def shares_namespace(self) -> bool:
        """Documents and audit entries live in the same collection."""
        return self.documents_collection == self.audit_collection

    @classmethod
    def public(cls) -> Scope:
        return cls(
            name="public",
            schema=PUBLIC_SCHEMA,
            documents_collection=WORLD_STATE,
            audit_collection=WORLD_STATE,
        )

    @classmethod
    def private(
        cls,
        documents_collection: str = "collectionPrivateDocs",
        audit_collection: str = "collectionAuditLogs",
    ) -> Scope:
        return cls(
            name="private",
            schema=PRIVATE_SCHEMA,
            documents_collection=documents_collection,
            audit_collection=audit_collection,
        )


class DocumentStore:
    """Reads and writes the document records of one scope.

    Example:
        >>> store = DocumentStore(Scope.public())
        >>> await store.put_document(ctx, PublicDocument("d1", "BankA", "u1"))
        >>> doc = await store.get_document(ctx, "d1")
    """

    def __init__(self, scope: Scope) -> None:
        self.scope = scope

    def _key(self, document_id: str) -> str:
        if self.scope.shares_namespace and is_audit_key(document_id):
            raise InvalidArgumentError(
                f"Document id {document_id!r} uses the reserved audit prefix",
                argument="documentId",
            )
        return document_id

    async def put_document(self, ctx: TransactionContext, document: PublicDocument) -> None:
        """Write or overwrite a document.

        Args:
            ctx: Transaction context
            document: Record of this scope's schema

        Raises:
            TypeError: If the record does not belong to this scope's schema
            InvalidArgumentError: If the id collides with the audit namespace
            LedgerError: If the write fails
        """
        if type(document) is not self.scope.schema.record_type:
            raise TypeError(
                f"{self.scope.name} scope stores {self.scope.schema.record_type.__name__}, "
                f"got {type(document).__name__}"
            )

        key = self._key(document.document_id)
        await ctx.put_state(self.scope.documents_collection, key, document.to_bytes())

        logger.debug(
            "Stored document",
            extra={"scope": self.scope.name, "document_id": key, "tx_id": ctx.tx_id},
        )

    async def get_document(self, ctx: TransactionContext, document_id: str) -> PublicDocument:
        """Get a document by id.

        Args:
            ctx: Transaction context
            document_id: Document identifier

        Returns:
            The stored record

        Raises:
            DocumentNotFoundError: If no document is stored under the id
            RecordSerializationError: If the stored bytes are malformed
        """
        key = self._key(document_id)
        raw = await ctx.get_state(self.scope.documents_collection, key)
        if raw is None:
            raise DocumentNotFoundError(document_id, scope=self.scope.name)
        return self.scope.schema.record_type.from_bytes(raw, key)

    async def scan_documents(
        self,
        ctx: TransactionContext,
        page_size: int | None = None,
    ) -> AsyncIterator[PublicDocument]:
        """Iterate every well-formed document of the scope in key order.

        In a shared namespace the audit range is stepped over by scanning
        the key ranges on either side of it.
        """
        if self.scope.shares_namespace:
            ranges = [("", AUDIT_KEY_PREFIX), (AUDIT_KEY_END, "")]
        else:
            ranges = [("", "")]

        for start_key, end_key in ranges:
            async for document in iter_decoded(
                ctx,
                self.scope.documents_collection,
                start_key,
                end_key,
                self.scope.schema.record_type.from_bytes,
                page_size=page_size,
                skip_key=is_audit_key if self.scope.shares_namespace else None,
            ):
                yield document
