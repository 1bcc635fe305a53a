"""
Operation catalog for DocRegistry.

The public surface of the registry, one contract per scope:
- PublicDocumentContract: createDocument, getDocumentById,
  queryByInstitution, queryByUser, queryAuditLogs
- PrivateDocumentContract: the same plus updateState

Every operation takes the host TransactionContext as its first argument.
Mutations write the document and its audit entry through that one
context, so the host commits both or neither.

Invariants:
    - Exactly one audit entry per successful mutation
    - create overwrites an existing id without complaint
    - update_state accepts any new state, including the current one
    - Queries never write

How to change safely:
    - New mutations must go through AuditTrail.record
    - Keep function names stable; callers address them by name via invoke()
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from ..ledger.base import TransactionContext
from .audit import AuditTrail
from .documents import DocumentStore, Scope
from .errors import InvalidArgumentError, UnknownOperationError
from .models import AuditLogEntry, AuditOperation, PrivateDocument, PublicDocument
from .query import AuditOrder, QueryEngine, serialize_results

if TYPE_CHECKING:
    from ..config import RegistryConfig

logger = logging.getLogger(__name__)


def _to_json(result: Any) -> Any:
    if result is None:
        return None
    if isinstance(result, list):
        return serialize_results(result)
    return result.to_dict()


class DocumentContract:
    """Operations shared by both scopes.

    Attributes:
        scope: Scope served by this contract
        documents: Document store of the scope
        audit: Audit trail of the scope
        query_engine: Engine used for all queries
    """

    FUNCTIONS: dict[str, str] = {
        "getDocumentById": "get_document_by_id",
        "queryByInstitution": "query_by_institution",
        "queryByUser": "query_by_user",
        "queryAuditLogs": "query_audit_logs",
    }

    def __init__(self, scope: Scope, query_engine: QueryEngine | None = None) -> None:
        self.scope = scope
        self.query_engine = query_engine or QueryEngine()
        self.documents = DocumentStore(scope)
        self.audit = AuditTrail(scope, self.query_engine)

    async def get_document_by_id(
        self, ctx: TransactionContext, document_id: str
    ) -> PublicDocument:
        """Get a document by id.

        Raises:
            DocumentNotFoundError: If the id is unknown
        """
        return await self.documents.get_document(ctx, document_id)

    async def query_by_institution(
        self, ctx: TransactionContext, institution: str
    ) -> list[PublicDocument]:
        """All documents of an institution (possibly none)."""
        return await self.query_engine.query_documents(ctx, self.documents, "institution", institution)

    async def query_by_user(self, ctx: TransactionContext, user_id: str) -> list[PublicDocument]:
        """All documents of a user (possibly none)."""
        return await self.query_engine.query_documents(ctx, self.documents, "userId", user_id)

    async def query_audit_logs(
        self,
        ctx: TransactionContext,
        filter_type: str,
        filter_value: str,
        start_date: str | None,
        end_date: str | None,
        order: AuditOrder | str = AuditOrder.KEY,
    ) -> list[AuditLogEntry]:
        """Audit entries matching a filter in an inclusive time window.

        Args:
            ctx: Transaction context
            filter_type: documentId, institution, userId or all; anything
                else matches nothing
            filter_value: Value the selected field must equal
            start_date: RFC 3339 lower bound; None is open, an unparseable
                value (including "") excludes nothing
            end_date: RFC 3339 upper bound; None is open, an unparseable
                value (including "") excludes everything
            order: "key" (ledger order) or "timestamp" (chronological)

        Returns:
            Matching audit entries
        """
        return await self.audit.scan_window(
            ctx, filter_type, filter_value, start_date, end_date, order=order
        )

    async def invoke(self, ctx: TransactionContext, function: str, args: Sequence[str]) -> Any:
        """Dispatch a catalog function by name with positional arguments.

        Args:
            ctx: Transaction context
            function: Function name, e.g. "createDocument"
            args: Positional arguments after the context

        Returns:
            JSON-compatible result (None for mutations)

        Raises:
            UnknownOperationError: If the function is not in the catalog
            InvalidArgumentError: If the argument count does not fit
        """
        method_name = self.FUNCTIONS.get(function)
        if method_name is None:
            raise UnknownOperationError(function, available=sorted(self.FUNCTIONS))

        method = getattr(self, method_name)
        params = list(inspect.signature(method).parameters.values())[1:]
        required = sum(1 for p in params if p.default is inspect.Parameter.empty)
        if not required <= len(args) <= len(params):
            expected = str(required) if required == len(params) else f"{required}-{len(params)}"
            raise InvalidArgumentError(
                f"{function} expects {expected} arguments, got {len(args)}",
                argument=function,
            )

        logger.debug(
            "Invoking catalog function",
            extra={"scope": self.scope.name, "function": function, "tx_id": ctx.tx_id},
        )
        return _to_json(await method(ctx, *args))


class PublicDocumentContract(DocumentContract):
    """Registry of public documents (no lifecycle state)."""

    FUNCTIONS = {**DocumentContract.FUNCTIONS, "createDocument": "create_document"}

    def __init__(self, query_engine: QueryEngine | None = None, scope: Scope | None = None) -> None:
        super().__init__(scope or Scope.public(), query_engine)

    async def create_document(
        self,
        ctx: TransactionContext,
        document_id: str,
        institution: str,
        user_id: str,
    ) -> None:
        """Register a public document and audit the creation."""
        document = PublicDocument(
            document_id=document_id,
            institution=institution,
            user_id=user_id,
        )
        await self.documents.put_document(ctx, document)
        await self.audit.record(ctx, AuditOperation.CREATE, document)

        logger.info(
            "Created document",
            extra={"scope": self.scope.name, "document_id": document_id, "tx_id": ctx.tx_id},
        )


class PrivateDocumentContract(DocumentContract):
    """Registry of private documents with content metadata and state."""

    FUNCTIONS = {
        **DocumentContract.FUNCTIONS,
        "createDocument": "create_document",
        "updateState": "update_state",
    }

    def __init__(self, query_engine: QueryEngine | None = None, scope: Scope | None = None) -> None:
        super().__init__(scope or Scope.private(), query_engine)

    async def create_document(
        self,
        ctx: TransactionContext,
        document_id: str,
        institution: str,
        user_id: str,
        name: str,
        path: str,
        content_hash: str,
        state: str,
    ) -> None:
        """Register a private document in its initial state and audit it."""
        document = PrivateDocument(
            document_id=document_id,
            institution=institution,
            user_id=user_id,
            name=name,
            path=path,
            hash=content_hash,
            state=state,
        )
        await self.documents.put_document(ctx, document)
        await self.audit.record(ctx, AuditOperation.CREATE, document)

        logger.info(
            "Created document",
            extra={
                "scope": self.scope.name,
                "document_id": document_id,
                "state": state,
                "tx_id": ctx.tx_id,
            },
        )

    async def update_state(self, ctx: TransactionContext, document_id: str, new_state: str) -> None:
        """Replace a document's state and audit the transition.

        No transition rules apply: any string is accepted, and setting the
        current state again still produces an audit entry.

        Raises:
            DocumentNotFoundError: If the id is unknown
        """
        document = await self.documents.get_document(ctx, document_id)
        old_state = document.state
        document.state = new_state

        await self.documents.put_document(ctx, document)
        await self.audit.record(
            ctx,
            AuditOperation.UPDATE_STATE,
            document,
            old_state=old_state,
        )

        logger.info(
            "Updated document state",
            extra={
                "scope": self.scope.name,
                "document_id": document_id,
                "old_state": old_state,
                "new_state": new_state,
                "tx_id": ctx.tx_id,
            },
        )


def create_contracts(
    config: RegistryConfig,
) -> tuple[PublicDocumentContract, PrivateDocumentContract]:
    """Build both contracts from configuration.

    Args:
        config: Registry configuration

    Returns:
        Tuple of (public contract, private contract)
    """
    engine = QueryEngine(page_size=config.scan.page_size)
    private_scope = Scope.private(
        documents_collection=config.collections.private_documents,
        audit_collection=config.collections.private_audit_logs,
    )
    return (
        PublicDocumentContract(query_engine=engine),
        PrivateDocumentContract(query_engine=engine, scope=private_scope),
    )
