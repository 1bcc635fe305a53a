"""
Query engine for DocRegistry.

Generic filter-and-scan logic shared by document and audit queries:
- iter_range: cursor-based range scan that resumes from host bookmarks
- iter_decoded: decode scanned values, skipping malformed records
- QueryEngine: exact-match document queries and audit window queries

Invariants:
    - A malformed record never fails a scan; it is logged and skipped
    - Audit windows are inclusive on both ends
    - Window bounds never raise; unparseable ones collapse to the zero time
    - An unknown audit filter type matches nothing and is not an error
    - Results follow ledger key order unless chronological order is requested

How to change safely:
    - Keep queries full-scan unless a secondary index is added to the ledger
    - New filter types need a field getter in AUDIT_FILTER_FIELDS
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from operator import attrgetter
from typing import TYPE_CHECKING, Any, TypeVar

from ..ledger.base import KeyValue, LedgerError, TransactionContext
from .errors import InvalidArgumentError, RecordSerializationError
from .models import AuditLogEntry, PublicDocument, parse_timestamp

if TYPE_CHECKING:
    from .audit import AuditTrail
    from .documents import DocumentStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FilterType(str, Enum):
    """Audit query filter types."""

    DOCUMENT_ID = "documentId"
    INSTITUTION = "institution"
    USER_ID = "userId"
    ALL = "all"


class AuditOrder(str, Enum):
    """Result order for audit queries.

    KEY keeps ledger key order (transaction-id lexicographic). TIMESTAMP
    sorts the filtered entries by transaction timestamp, ties keeping
    key order.
    """

    KEY = "key"
    TIMESTAMP = "timestamp"


AUDIT_FILTER_FIELDS: dict[str, Callable[[AuditLogEntry], str]] = {
    FilterType.DOCUMENT_ID.value: attrgetter("document_id"),
    FilterType.INSTITUTION.value: attrgetter("institution"),
    FilterType.USER_ID.value: attrgetter("user_id"),
}

DOCUMENT_QUERY_FIELDS: dict[str, str] = {
    "institution": "institution",
    "userId": "user_id",
}


async def iter_range(
    ctx: TransactionContext,
    collection: str,
    start_key: str,
    end_key: str,
    page_size: int | None = None,
) -> AsyncIterator[KeyValue]:
    """Iterate a key range page by page.

    Each page is one host range scan. When the host stops early (page_size
    or its own iteration cap), the scan's bookmark is used as the start of
    the next page.

    Args:
        ctx: Transaction context
        collection: Collection name
        start_key: Inclusive lower bound
        end_key: Exclusive upper bound ("" for unbounded)
        page_size: Pairs requested per page (None = host default)

    Yields:
        KeyValue pairs in key order

    Raises:
        LedgerError: If the host fails or stops making progress
    """
    cursor = start_key
    pages = 0
    while True:
        scan = ctx.range_scan(collection, cursor, end_key, limit=page_size)
        fetched = 0
        async for kv in scan:
            fetched += 1
            yield kv
        pages += 1

        if scan.bookmark is None:
            break
        if fetched == 0:
            raise LedgerError(f"Range scan on {collection!r} made no progress at {cursor!r}")
        cursor = scan.bookmark

    if pages > 1:
        logger.debug(
            "Range scan resumed across pages",
            extra={"collection": collection, "pages": pages},
        )


async def iter_decoded(
    ctx: TransactionContext,
    collection: str,
    start_key: str,
    end_key: str,
    decode: Callable[[bytes, str], T],
    page_size: int | None = None,
    skip_key: Callable[[str], bool] | None = None,
) -> AsyncIterator[T]:
    """Iterate decoded records of a key range, skipping malformed ones.

    Args:
        ctx: Transaction context
        collection: Collection name
        start_key: Inclusive lower bound
        end_key: Exclusive upper bound ("" for unbounded)
        decode: Callable turning (raw bytes, key) into a record
        page_size: Pairs requested per page
        skip_key: Optional predicate for keys that are not records of this kind

    Yields:
        Decoded records in key order
    """
    async for kv in iter_range(ctx, collection, start_key, end_key, page_size=page_size):
        if skip_key is not None and skip_key(kv.key):
            continue
        try:
            record = decode(kv.value, kv.key)
        except RecordSerializationError as e:
            logger.warning(
                "Skipping malformed record",
                extra={"collection": collection, "key": kv.key, "error": e.message},
            )
            continue
        yield record


# Bounds that do not parse collapse to the zero time: as a start it excludes
# nothing, as an end it excludes everything.
ZERO_TIME = datetime.min.replace(tzinfo=timezone.utc)


def is_known_filter_type(filter_type: str) -> bool:
    return filter_type == FilterType.ALL.value or filter_type in AUDIT_FILTER_FIELDS


def _parse_bound(value: str | None, argument: str) -> datetime | None:
    if value is None:
        return None
    try:
        return parse_timestamp(value)
    except ValueError:
        logger.debug(
            "Unparseable audit window bound",
            extra={"argument": argument, "value": value},
        )
        return ZERO_TIME


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive time window; a None bound is open.

    A bound that is not RFC 3339 (including "") becomes ZERO_TIME, so an
    unparseable end matches nothing and an unparseable start matches all.

    Attributes:
        start: Earliest accepted timestamp
        end: Latest accepted timestamp
    """

    start: datetime | None = None
    end: datetime | None = None

    @classmethod
    def parse(cls, start_date: str | None, end_date: str | None) -> TimeWindow:
        """Build a window from RFC 3339 strings (None for an open bound)."""
        return cls(
            start=_parse_bound(start_date, "startDate"),
            end=_parse_bound(end_date, "endDate"),
        )

    def contains(self, ts: datetime) -> bool:
        if self.start is not None and ts < self.start:
            return False
        if self.end is not None and ts > self.end:
            return False
        return True


@dataclass(frozen=True)
class AuditFilter:
    """Field filter plus time window applied to audit entries.

    Attributes:
        filter_type: documentId, institution, userId or all
        filter_value: Value the selected field must equal
        window: Inclusive time window
    """

    filter_type: str
    filter_value: str
    window: TimeWindow

    @property
    def is_known_type(self) -> bool:
        return is_known_filter_type(self.filter_type)

    def matches(self, entry: AuditLogEntry) -> bool:
        try:
            ts = entry.parsed_timestamp()
        except ValueError:
            logger.debug(
                "Skipping audit entry with unparseable timestamp",
                extra={"key": entry.key, "timestamp": entry.timestamp},
            )
            return False
        if not self.window.contains(ts):
            return False
        return self.matches_field(entry)

    def matches_field(self, entry: AuditLogEntry) -> bool:
        if self.filter_type == FilterType.ALL.value:
            return True
        getter = AUDIT_FILTER_FIELDS.get(self.filter_type)
        if getter is None:
            return False
        return getter(entry) == self.filter_value


class QueryEngine:
    """Full-scan queries over documents and audit entries.

    There is no secondary index: every query scans its whole namespace.

    Example:
        >>> engine = QueryEngine(page_size=500)
        >>> docs = await engine.query_documents(ctx, store, "institution", "BankA")
    """

    def __init__(self, page_size: int | None = None) -> None:
        """Initialize the query engine.

        Args:
            page_size: Pairs requested per range scan page
        """
        self.page_size = page_size

    async def query_documents(
        self,
        ctx: TransactionContext,
        store: DocumentStore,
        field: str,
        value: str,
    ) -> list[PublicDocument]:
        """Return every document whose field equals value.

        Args:
            ctx: Transaction context
            store: Document store of the scope to search
            field: institution or userId
            value: Exact value to match

        Returns:
            Matching documents in key order (possibly empty)
        """
        attr = DOCUMENT_QUERY_FIELDS.get(field)
        if attr is None:
            raise InvalidArgumentError(f"Documents cannot be queried by {field!r}", argument=field)

        return [
            doc
            async for doc in store.scan_documents(ctx, page_size=self.page_size)
            if getattr(doc, attr) == value
        ]

    async def query_audit(
        self,
        ctx: TransactionContext,
        trail: AuditTrail,
        audit_filter: AuditFilter,
        order: AuditOrder | str = AuditOrder.KEY,
    ) -> list[AuditLogEntry]:
        """Return audit entries accepted by a filter.

        Args:
            ctx: Transaction context
            trail: Audit trail of the scope to search
            audit_filter: Field filter and time window
            order: Result order

        Returns:
            Matching entries (empty for an unknown filter type)
        """
        try:
            order = AuditOrder(order)
        except ValueError as e:
            raise InvalidArgumentError(f"Unknown audit order {order!r}", argument="order") from e

        if not audit_filter.is_known_type:
            logger.debug(
                "Unknown audit filter type matches nothing",
                extra={"filter_type": audit_filter.filter_type},
            )
            return []

        entries = [
            entry
            async for entry in trail.scan_entries(ctx, page_size=self.page_size)
            if audit_filter.matches(entry)
        ]
        if order == AuditOrder.TIMESTAMP:
            entries.sort(key=lambda entry: entry.parsed_timestamp())
        return entries


def serialize_results(records: list[Any]) -> list[dict[str, Any]]:
    """Convert records to JSON-compatible dictionaries."""
    return [record.to_dict() for record in records]
