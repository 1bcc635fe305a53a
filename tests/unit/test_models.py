"""
Unit tests for persisted record types.

Tests cover:
- JSON field names of documents and audit entries
- Decoding of malformed records
- Timestamp formatting and parsing
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from chaincode.docregistry.registry.errors import RecordSerializationError
from chaincode.docregistry.registry.models import (
    AUDIT_KEY_END,
    AUDIT_KEY_PREFIX,
    AuditLogEntry,
    AuditOperation,
    PrivateDocument,
    PublicDocument,
    audit_key,
    format_timestamp,
    is_audit_key,
    parse_timestamp,
)


class TestDocuments:
    """Tests for PublicDocument and PrivateDocument."""

    def test_public_field_names(self):
        """Public documents serialize with the ledger field names."""
        doc = PublicDocument(document_id="d1", institution="BankA", user_id="u1")

        assert json.loads(doc.to_bytes()) == {
            "documentId": "d1",
            "institution": "BankA",
            "userId": "u1",
        }

    def test_private_field_names(self):
        """Private documents add content metadata and state."""
        doc = PrivateDocument(
            document_id="d2",
            institution="BankB",
            user_id="u2",
            name="file.pdf",
            path="/path",
            hash="h123",
            state="DRAFT",
        )

        assert doc.to_dict() == {
            "documentId": "d2",
            "institution": "BankB",
            "userId": "u2",
            "name": "file.pdf",
            "path": "/path",
            "hash": "h123",
            "state": "DRAFT",
        }
        assert PrivateDocument.from_bytes(doc.to_bytes()) == doc

    def test_private_missing_optional_fields(self):
        """Missing content fields decode as empty strings."""
        raw = b'{"documentId":"d2","institution":"BankB","userId":"u2"}'

        doc = PrivateDocument.from_bytes(raw)

        assert doc.state == ""
        assert doc.hash == ""

    def test_public_ignores_unknown_fields(self):
        """Extra fields in stored JSON are ignored."""
        raw = b'{"documentId":"d1","institution":"BankA","userId":"u1","extra":1}'

        assert PublicDocument.from_bytes(raw) == PublicDocument("d1", "BankA", "u1")

    @pytest.mark.parametrize(
        "raw",
        [
            b"not json",
            b"[1, 2]",
            b'{"institution":"BankA","userId":"u1"}',
            b'{"documentId":7,"institution":"BankA","userId":"u1"}',
            b"\xff\xfe",
        ],
    )
    def test_malformed_documents(self, raw):
        """Malformed bytes raise RecordSerializationError with the key."""
        with pytest.raises(RecordSerializationError) as exc_info:
            PublicDocument.from_bytes(raw, "d1")

        assert exc_info.value.key == "d1"
        assert exc_info.value.code == "SERIALIZATION_ERROR"


class TestAuditLogEntry:
    """Tests for AuditLogEntry."""

    def test_create_entry_omits_states(self):
        """A public create entry has neither oldState nor newState."""
        entry = AuditLogEntry(
            tx_id="tx1",
            document_id="d1",
            institution="BankA",
            user_id="u1",
            operation=AuditOperation.CREATE,
            timestamp="2023-01-01T00:00:00Z",
        )

        data = entry.to_dict()

        assert "oldState" not in data
        assert "newState" not in data
        assert data["operation"] == "create"
        assert data["txID"] == "tx1"
        assert entry.key == "AUDIT_tx1"

    def test_update_entry_includes_states(self):
        """An update entry carries both states."""
        entry = AuditLogEntry(
            tx_id="tx2",
            document_id="d2",
            institution="BankB",
            user_id="u2",
            operation=AuditOperation.UPDATE_STATE,
            timestamp="2023-01-01T00:00:00Z",
            old_state="DRAFT",
            new_state="APPROVED",
        )

        data = json.loads(entry.to_bytes())

        assert data["oldState"] == "DRAFT"
        assert data["newState"] == "APPROVED"
        assert AuditLogEntry.from_bytes(entry.to_bytes()) == entry

    def test_empty_old_state_kept(self):
        """An empty previous state is still recorded."""
        entry = AuditLogEntry(
            tx_id="tx3",
            document_id="d3",
            institution="BankB",
            user_id="u2",
            operation=AuditOperation.UPDATE_STATE,
            timestamp="2023-01-01T00:00:00Z",
            old_state="",
            new_state="DRAFT",
        )

        assert entry.to_dict()["oldState"] == ""

    def test_unknown_operation(self):
        """An unknown operation is a malformed record."""
        raw = b'{"txID":"tx1","documentId":"d1","operation":"delete","timestamp":""}'

        with pytest.raises(RecordSerializationError):
            AuditLogEntry.from_bytes(raw, "AUDIT_tx1")

    def test_missing_tx_id(self):
        """txID is required."""
        raw = b'{"documentId":"d1","operation":"create"}'

        with pytest.raises(RecordSerializationError):
            AuditLogEntry.from_bytes(raw)

    def test_parsed_timestamp(self):
        """The stored timestamp parses to an aware datetime."""
        entry = AuditLogEntry(
            tx_id="tx1",
            document_id="d1",
            institution="BankA",
            user_id="u1",
            operation=AuditOperation.CREATE,
            timestamp="2023-01-01T10:00:00Z",
        )

        assert entry.parsed_timestamp() == datetime(2023, 1, 1, 10, tzinfo=timezone.utc)


class TestAuditKeys:
    """Tests for audit key helpers."""

    def test_audit_key(self):
        assert audit_key("abc") == "AUDIT_abc"
        assert is_audit_key("AUDIT_abc")
        assert not is_audit_key("doc-AUDIT_")

    def test_audit_range_bounds_every_audit_key(self):
        """Every audit key sorts inside [AUDIT_, AUDIT_ + U+10FFFF)."""
        for tx_id in ["0" * 64, "f" * 64, "zzz", "￿"]:
            key = audit_key(tx_id)
            assert AUDIT_KEY_PREFIX <= key < AUDIT_KEY_END


class TestTimestamps:
    """Tests for timestamp formatting and parsing."""

    def test_format_utc_seconds(self):
        """Timestamps are UTC with second precision."""
        ts = datetime(2023, 1, 1, 10, 0, 0, 987654, tzinfo=timezone.utc)

        assert format_timestamp(ts) == "2023-01-01T10:00:00Z"

    def test_format_converts_offset(self):
        """Non-UTC timestamps are converted to UTC."""
        ts = datetime(2023, 1, 1, 12, 0, 0, tzinfo=timezone(timedelta(hours=2)))

        assert format_timestamp(ts) == "2023-01-01T10:00:00Z"

    def test_format_naive_is_utc(self):
        assert format_timestamp(datetime(2023, 1, 1)) == "2023-01-01T00:00:00Z"

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("2023-01-01T00:00:00Z", datetime(2023, 1, 1, tzinfo=timezone.utc)),
            ("2023-01-01t00:00:00z", datetime(2023, 1, 1, tzinfo=timezone.utc)),
            ("2023-01-01T02:00:00+02:00", datetime(2023, 1, 1, tzinfo=timezone.utc)),
            (
                "2023-01-01T00:00:00.123456789Z",
                datetime(2023, 1, 1, 0, 0, 0, 123456, tzinfo=timezone.utc),
            ),
            (
                "2023-01-01T00:00:00.5Z",
                datetime(2023, 1, 1, 0, 0, 0, 500000, tzinfo=timezone.utc),
            ),
        ],
    )
    def test_parse_valid(self, value, expected):
        assert parse_timestamp(value) == expected

    @pytest.mark.parametrize(
        "value",
        ["", "2023-01-01", "2023-01-01T00:00:00", "yesterday", "2023-13-01T00:00:00Z", None],
    )
    def test_parse_invalid(self, value):
        """Values without an offset or outside the calendar are rejected."""
        with pytest.raises(ValueError):
            parse_timestamp(value)
