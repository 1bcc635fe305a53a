"""
Append-only audit trail for DocRegistry.

Every mutating operation writes exactly one AuditLogEntry, in the same
host transaction as the document write, under the key AUDIT_<tx_id>.

Invariants:
    - The audit key is derived from the current transaction id only
    - An existing audit key is never rewritten (AuditEntryExistsError)
    - Entry timestamps come from the transaction timestamp
    - Window scans skip malformed entries and unparseable timestamps

How to change safely:
    - Never add an operation that deletes or edits audit keys
    - Keep the audit namespace a contiguous key range (AUDIT_ prefix)
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

from ..ledger.base import TransactionContext
from .documents import Scope
from .errors import AuditEntryExistsError, InvalidArgumentError
from .models import (
    AUDIT_KEY_END,
    AUDIT_KEY_PREFIX,
    AuditLogEntry,
    AuditOperation,
    PublicDocument,
    audit_key,
    format_timestamp,
)
from .query import (
    AuditFilter,
    AuditOrder,
    QueryEngine,
    TimeWindow,
    is_known_filter_type,
    iter_decoded,
)

logger = logging.getLogger(__name__)


class AuditTrail:
    """Audit log of one scope.

    Example:
        >>> trail = AuditTrail(Scope.public())
        >>> await trail.record(ctx, AuditOperation.CREATE, document)
        >>> entries = await trail.scan_window(ctx, "documentId", "d1", start, end)
    """

    def __init__(self, scope: Scope, query_engine: QueryEngine | None = None) -> None:
        """Initialize the audit trail.

        Args:
            scope: Scope whose audit collection this trail writes
            query_engine: Engine used for window scans
        """
        self.scope = scope
        self.query_engine = query_engine or QueryEngine()

    async def append(self, ctx: TransactionContext, entry: AuditLogEntry) -> None:
        """Write an entry under AUDIT_<ctx.tx_id>, exactly once.

        Raises:
            InvalidArgumentError: If the entry belongs to another transaction
            AuditEntryExistsError: If this transaction already wrote its entry
            LedgerError: If the write fails
        """
        if entry.tx_id != ctx.tx_id:
            raise InvalidArgumentError(
                f"Audit entry for transaction {entry.tx_id} cannot be written in {ctx.tx_id}",
                argument="txID",
            )

        key = audit_key(ctx.tx_id)
        collection = self.scope.audit_collection
        if await ctx.get_state(collection, key) is not None:
            raise AuditEntryExistsError(key, ctx.tx_id)

        await ctx.put_state(collection, key, entry.to_bytes())

        logger.info(
            "Audit entry appended",
            extra={
                "scope": self.scope.name,
                "tx_id": ctx.tx_id,
                "document_id": entry.document_id,
                "operation": entry.operation.value,
            },
        )

    async def record(
        self,
        ctx: TransactionContext,
        operation: AuditOperation,
        document: PublicDocument,
        old_state: str | None = None,
    ) -> AuditLogEntry:
        """Build the entry for a mutation of document and append it.

        The resulting state is read from the document when the scope's
        schema has one; stateless schemas never record newState.

        Args:
            ctx: Transaction context of the mutation
            operation: create or update_state
            document: Document as written by the mutation
            old_state: Previous state (update_state only)

        Returns:
            The appended entry
        """
        entry = AuditLogEntry(
            tx_id=ctx.tx_id,
            document_id=document.document_id,
            institution=document.institution,
            user_id=document.user_id,
            operation=operation,
            timestamp=format_timestamp(ctx.tx_timestamp),
            old_state=old_state,
            new_state=document.state if self.scope.schema.has_state else None,
        )
        await self.append(ctx, entry)
        return entry

    def scan_entries(
        self,
        ctx: TransactionContext,
        page_size: int | None = None,
    ) -> AsyncIterator[AuditLogEntry]:
        """Iterate every well-formed audit entry in key order."""
        return iter_decoded(
            ctx,
            self.scope.audit_collection,
            AUDIT_KEY_PREFIX,
            AUDIT_KEY_END,
            AuditLogEntry.from_bytes,
            page_size=page_size,
        )

    async def scan_window(
        self,
        ctx: TransactionContext,
        filter_type: str,
        filter_value: str,
        start: str | None,
        end: str | None,
        order: AuditOrder | str = AuditOrder.KEY,
    ) -> list[AuditLogEntry]:
        """Return entries matching a filter inside an inclusive time window.

        Args:
            ctx: Transaction context
            filter_type: documentId, institution, userId or all
            filter_value: Value the selected field must equal
            start: RFC 3339 lower bound (None for open; unparseable matches all)
            end: RFC 3339 upper bound (None for open; unparseable matches none)
            order: AuditOrder.KEY (ledger order) or AuditOrder.TIMESTAMP

        Returns:
            Matching entries; empty for an unknown filter type
        """
        if not is_known_filter_type(filter_type):
            logger.debug(
                "Unknown audit filter type matches nothing",
                extra={"scope": self.scope.name, "filter_type": filter_type},
            )
            return []

        window = TimeWindow.parse(start, end)
        audit_filter = AuditFilter(filter_type=filter_type, filter_value=filter_value, window=window)
        return await self.query_engine.query_audit(ctx, self, audit_filter, order=order)
