"""
Unit tests for the query engine.

Tests cover:
- Paged range iteration through bookmarks
- Skipping malformed records
- Time window parsing and inclusive bounds
- Audit filter dispatch
"""

from datetime import datetime, timezone

import pytest

from chaincode.docregistry.ledger.base import KeyValue, LedgerError
from chaincode.docregistry.ledger.memory import InMemoryLedger
from chaincode.docregistry.registry.models import AuditLogEntry, AuditOperation, PublicDocument
from chaincode.docregistry.registry.query import (
    AuditFilter,
    FilterType,
    ZERO_TIME,
    TimeWindow,
    iter_decoded,
    iter_range,
)


def make_entry(tx_id="tx1", document_id="d1", institution="BankA", user_id="u1",
               timestamp="2023-01-01T10:00:00Z"):
    return AuditLogEntry(
        tx_id=tx_id,
        document_id=document_id,
        institution=institution,
        user_id=user_id,
        operation=AuditOperation.CREATE,
        timestamp=timestamp,
    )


class StalledScan:
    """Range scan that yields nothing but claims more data."""

    bookmark = "k"

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        return
        yield


class StalledContext:
    """Context whose scans never make progress."""

    tx_id = "tx-stalled"
    tx_timestamp = datetime(2023, 1, 1, tzinfo=timezone.utc)

    async def get_state(self, collection, key):
        return None

    async def put_state(self, collection, key, value):
        pass

    def range_scan(self, collection, start_key, end_key, limit=None):
        return StalledScan()


class TestIterRange:
    """Tests for iter_range and iter_decoded."""

    @pytest.fixture
    def ledger(self):
        """Ledger holding 7 keys with a host cap of 3 pairs per scan."""
        ledger = InMemoryLedger(scan_limit=3)
        for i in range(7):
            ledger.put_raw("", f"k{i}", str(i).encode())
        return ledger

    @pytest.mark.asyncio
    async def test_resumes_across_host_cap(self, ledger):
        """Results are complete even when the host caps each scan."""
        await ledger.connect()

        async with ledger.transaction() as ctx:
            pairs = [kv async for kv in iter_range(ctx, "", "", "")]

        assert [kv.key for kv in pairs] == [f"k{i}" for i in range(7)]
        assert all(isinstance(kv, KeyValue) for kv in pairs)

    @pytest.mark.asyncio
    async def test_page_size(self, ledger):
        """A page size smaller than the cap still returns everything."""
        await ledger.connect()

        async with ledger.transaction() as ctx:
            pairs = [kv async for kv in iter_range(ctx, "", "k2", "k6", page_size=1)]

        assert [kv.key for kv in pairs] == ["k2", "k3", "k4", "k5"]

    @pytest.mark.asyncio
    async def test_no_progress_raises(self):
        """A host that stops making progress is an error, not a hang."""
        with pytest.raises(LedgerError):
            async for _ in iter_range(StalledContext(), "", "", ""):
                pass

    @pytest.mark.asyncio
    async def test_decoded_skips_malformed(self):
        """Malformed records are skipped and decoding continues."""
        ledger = InMemoryLedger()
        ledger.put_raw("", "a", PublicDocument("a", "BankA", "u1").to_bytes())
        ledger.put_raw("", "b", b"{corrupt")
        ledger.put_raw("", "c", PublicDocument("c", "BankA", "u2").to_bytes())
        await ledger.connect()

        async with ledger.transaction() as ctx:
            docs = [
                doc
                async for doc in iter_decoded(ctx, "", "", "", PublicDocument.from_bytes)
            ]

        assert [doc.document_id for doc in docs] == ["a", "c"]

    @pytest.mark.asyncio
    async def test_decoded_skip_key(self):
        """Keys matched by skip_key are not decoded at all."""
        ledger = InMemoryLedger()
        ledger.put_raw("", "a", PublicDocument("a", "BankA", "u1").to_bytes())
        ledger.put_raw("", "b", b"not a document")
        await ledger.connect()

        async with ledger.transaction() as ctx:
            docs = [
                doc
                async for doc in iter_decoded(
                    ctx, "", "", "", PublicDocument.from_bytes, skip_key=lambda k: k == "b"
                )
            ]

        assert [doc.document_id for doc in docs] == ["a"]


class TestTimeWindow:
    """Tests for TimeWindow."""

    def test_open_bounds(self):
        """None bounds are open."""
        window = TimeWindow.parse(None, None)

        assert window.start is None
        assert window.end is None
        assert window.contains(datetime(1970, 1, 1, tzinfo=timezone.utc))

    def test_inclusive_bounds(self):
        """Timestamps equal to either bound are inside."""
        window = TimeWindow.parse("2023-01-01T00:00:00Z", "2023-01-02T00:00:00Z")

        assert window.contains(datetime(2023, 1, 1, tzinfo=timezone.utc))
        assert window.contains(datetime(2023, 1, 2, tzinfo=timezone.utc))
        assert not window.contains(datetime(2023, 1, 2, 0, 0, 1, tzinfo=timezone.utc))
        assert not window.contains(datetime(2022, 12, 31, 23, 59, 59, tzinfo=timezone.utc))

    @pytest.mark.parametrize("bad", ["", "2023-01-01", "soon", "2023-01-01T00:00:00"])
    def test_unparseable_bound_is_zero_time(self, bad):
        """Bounds that do not parse become the zero time instead of raising."""
        window = TimeWindow.parse(bad, bad)

        assert window.start == ZERO_TIME
        assert window.end == ZERO_TIME

    def test_unparseable_start_excludes_nothing(self):
        window = TimeWindow.parse("2023-01-01", "2023-01-02T00:00:00Z")

        assert window.contains(datetime(1970, 1, 1, tzinfo=timezone.utc))
        assert window.contains(datetime(2023, 1, 1, 12, tzinfo=timezone.utc))

    def test_unparseable_end_excludes_everything(self):
        window = TimeWindow.parse(None, "")

        assert not window.contains(datetime(1970, 1, 1, tzinfo=timezone.utc))
        assert not window.contains(datetime(2023, 1, 1, tzinfo=timezone.utc))


class TestAuditFilter:
    """Tests for AuditFilter."""

    @pytest.mark.parametrize(
        "filter_type,filter_value",
        [
            (FilterType.DOCUMENT_ID.value, "d1"),
            (FilterType.INSTITUTION.value, "BankA"),
            (FilterType.USER_ID.value, "u1"),
            (FilterType.ALL.value, "ignored"),
        ],
    )
    def test_matching_fields(self, filter_type, filter_value):
        audit_filter = AuditFilter(filter_type, filter_value, TimeWindow())

        assert audit_filter.is_known_type
        assert audit_filter.matches(make_entry())

    def test_value_mismatch(self):
        audit_filter = AuditFilter("institution", "BankB", TimeWindow())

        assert not audit_filter.matches(make_entry())

    def test_unknown_type_matches_nothing(self):
        """An unknown filter type is not an error; it matches nothing."""
        audit_filter = AuditFilter("foo", "d1", TimeWindow())

        assert not audit_filter.is_known_type
        assert not audit_filter.matches(make_entry())

    def test_window_applied(self):
        window = TimeWindow.parse("2023-01-01T11:00:00Z", None)
        audit_filter = AuditFilter("all", "", window)

        assert not audit_filter.matches(make_entry(timestamp="2023-01-01T10:00:00Z"))
        assert audit_filter.matches(make_entry(timestamp="2023-01-01T11:00:00Z"))

    def test_unparseable_timestamp_skipped(self):
        """Entries whose timestamp does not parse never match."""
        audit_filter = AuditFilter("all", "", TimeWindow())

        assert not audit_filter.matches(make_entry(timestamp="garbage"))
