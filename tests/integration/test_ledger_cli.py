"""
Integration tests for the ledger CLI.

Runs the docregistry command against a SQLite ledger in a temporary
directory, one process-level invocation per command.

Tests cover:
- invoke for mutations and lookups in both scopes
- audit with filters and chronological order
- Exit codes for registry errors and bad configuration
"""

import json
import logging
import tempfile

import pytest

from chaincode.docregistry.tools.ledger_cli import build_parser, main


class TestLedgerCLI:
    """Tests for the docregistry command."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture(autouse=True)
    def env(self, monkeypatch, data_dir):
        """Point the CLI at a SQLite ledger and restore logging afterwards."""
        monkeypatch.setenv("LEDGER_BACKEND", "sqlite")
        monkeypatch.setenv("DATA_DIR", data_dir)
        monkeypatch.setenv("SQLITE_WAL_MODE", "false")
        monkeypatch.setenv("LOG_FORMAT", "text")
        monkeypatch.setenv("LOG_LEVEL", "WARNING")

        root_logger = logging.getLogger()
        handlers, level = root_logger.handlers[:], root_logger.level
        yield
        root_logger.handlers = handlers
        root_logger.setLevel(level)

    def run(self, capsys, *argv):
        with pytest.raises(SystemExit) as exc_info:
            main(list(argv))
        captured = capsys.readouterr()
        return exc_info.value.code, captured.out, captured.err

    def test_public_create_and_get(self, capsys):
        code, out, _ = self.run(capsys, "invoke", "createDocument", "d1", "BankA", "u1")
        assert code == 0
        created = json.loads(out)
        assert created["result"] is None
        assert len(created["txId"]) == 64

        code, out, _ = self.run(capsys, "invoke", "getDocumentById", "d1")
        assert code == 0
        assert json.loads(out)["result"] == {
            "documentId": "d1",
            "institution": "BankA",
            "userId": "u1",
        }

        code, out, _ = self.run(capsys, "audit", "--filter-type", "documentId", "--filter-value", "d1")
        assert code == 0
        [entry] = json.loads(out)
        assert entry["txID"] == created["txId"]
        assert entry["operation"] == "create"

    def test_private_lifecycle(self, capsys):
        code, _, _ = self.run(
            capsys,
            "--scope", "private",
            "invoke", "createDocument", "d2", "BankB", "u2", "file.pdf", "/path", "h123", "DRAFT",
        )
        assert code == 0

        code, _, _ = self.run(capsys, "--scope", "private", "invoke", "updateState", "d2", "APPROVED")
        assert code == 0

        code, out, _ = self.run(capsys, "--scope", "private", "invoke", "getDocumentById", "d2")
        assert json.loads(out)["result"]["state"] == "APPROVED"

        code, out, _ = self.run(
            capsys,
            "--scope", "private",
            "audit", "--filter-type", "userId", "--filter-value", "u2", "--chronological",
        )
        assert code == 0
        entries = json.loads(out)
        assert len(entries) == 2
        assert {entry["operation"] for entry in entries} == {"create", "update_state"}

        # Public scope sees none of it
        code, out, _ = self.run(capsys, "audit")
        assert json.loads(out) == []

    def test_missing_document_exits_1(self, capsys):
        code, out, err = self.run(capsys, "invoke", "getDocumentById", "ghost")

        assert code == 1
        assert out == ""
        assert "Document not found: ghost" in err

    def test_unknown_function_exits_1(self, capsys):
        code, _, err = self.run(capsys, "invoke", "updateState", "d1", "X")

        assert code == 1
        assert "Unknown function" in err

    def test_unparseable_window_is_not_an_error(self, capsys):
        """A non RFC 3339 start excludes nothing; an empty end excludes everything."""
        self.run(capsys, "invoke", "createDocument", "d1", "BankA", "u1")

        code, out, _ = self.run(capsys, "audit", "--start", "yesterday")
        assert code == 0
        assert len(json.loads(out)) == 1

        code, out, _ = self.run(capsys, "audit", "--start", "2000-01-01T00:00:00Z", "--end", "")
        assert code == 0
        assert json.loads(out) == []

    def test_invalid_configuration_exits_2(self, capsys, monkeypatch):
        monkeypatch.setenv("QUERY_PAGE_SIZE", "0")

        code, _, err = self.run(capsys, "audit")

        assert code == 2
        assert "QUERY_PAGE_SIZE" in err

    def test_parser_defaults(self):
        args = build_parser().parse_args(["audit"])

        assert args.scope == "public"
        assert args.filter_type == "all"
        assert args.start is None
        assert args.end is None
        assert not args.chronological
