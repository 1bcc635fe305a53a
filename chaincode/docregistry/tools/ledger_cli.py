"""
Ledger CLI tool for DocRegistry.

This tool runs catalog functions against a local ledger:
- invoke: Run one function in one transaction and print the JSON result
- audit: Print audit entries for a filter and time window

Usage:
    docregistry --scope private invoke createDocument d2 BankB u2 file.pdf /path h123 DRAFT
    docregistry --scope private invoke updateState d2 APPROVED
    docregistry --scope private audit --filter-type documentId --filter-value d2 --chronological

Configuration comes from the environment (see config.py); --backend and
--data-dir override LEDGER_BACKEND and DATA_DIR.

Invariants:
    - Each command runs in exactly one host transaction
    - Output on stdout is JSON; diagnostics go to stderr
    - Registry and ledger errors exit with status 1
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from typing import Any

import json_log_formatter

from ..config import LedgerBackend, RegistryConfig
from ..ledger import Ledger, LedgerError, create_ledger
from ..registry import (
    AuditOrder,
    DocRegistryError,
    DocumentContract,
    create_contracts,
)

logger = logging.getLogger(__name__)


def setup_logging(config: RegistryConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Registry configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]


class LedgerCLI:
    """Runs catalog functions against a connected ledger.

    Example:
        >>> cli = LedgerCLI(ledger, config)
        >>> tx_id, result = await cli.invoke("public", "getDocumentById", ["d1"])
    """

    def __init__(self, ledger: Ledger, config: RegistryConfig) -> None:
        self.ledger = ledger
        public, private = create_contracts(config)
        self._contracts: dict[str, DocumentContract] = {"public": public, "private": private}

    def contract_for(self, scope: str) -> DocumentContract:
        return self._contracts[scope]

    async def invoke(self, scope: str, function: str, args: list[str]) -> tuple[str, Any]:
        """Run one catalog function in its own transaction.

        Returns:
            Tuple of (transaction id, JSON-compatible result)
        """
        contract = self.contract_for(scope)
        async with self.ledger.transaction() as ctx:
            result = await contract.invoke(ctx, function, args)
            return ctx.tx_id, result

    async def audit(
        self,
        scope: str,
        filter_type: str,
        filter_value: str,
        start: str | None,
        end: str | None,
        chronological: bool = False,
    ) -> list[dict[str, Any]]:
        """Query audit entries of a scope.

        Returns:
            Audit entries as dictionaries
        """
        contract = self.contract_for(scope)
        order = AuditOrder.TIMESTAMP if chronological else AuditOrder.KEY
        async with self.ledger.transaction() as ctx:
            entries = await contract.query_audit_logs(
                ctx, filter_type, filter_value, start, end, order=order
            )
        return [entry.to_dict() for entry in entries]


async def run(args: argparse.Namespace, config: RegistryConfig) -> int:
    """Execute a parsed command.

    Returns:
        Process exit code
    """
    ledger = create_ledger(config)
    try:
        await ledger.connect()
        cli = LedgerCLI(ledger, config)

        if args.command == "invoke":
            tx_id, result = await cli.invoke(args.scope, args.function, args.args)
            output: Any = {"txId": tx_id, "result": result}
        else:
            output = await cli.audit(
                args.scope,
                args.filter_type,
                args.filter_value,
                args.start,
                args.end,
                chronological=args.chronological,
            )

    except (DocRegistryError, LedgerError) as e:
        logger.error(f"Command failed: {e}")
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await ledger.close()

    print(json.dumps(output, indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="DocRegistry ledger tool")
    parser.add_argument(
        "--scope", choices=["public", "private"], default="public", help="Document scope"
    )
    parser.add_argument(
        "--backend",
        choices=[backend.value for backend in LedgerBackend],
        help="Ledger backend (default: LEDGER_BACKEND)",
    )
    parser.add_argument("--data-dir", help="SQLite data directory (default: DATA_DIR)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # invoke command
    invoke_parser = subparsers.add_parser("invoke", help="Run a catalog function")
    invoke_parser.add_argument("function", help="Function name, e.g. createDocument")
    invoke_parser.add_argument("args", nargs="*", help="Positional function arguments")

    # audit command
    audit_parser = subparsers.add_parser("audit", help="Query audit entries")
    audit_parser.add_argument(
        "--filter-type", default="all", help="documentId, institution, userId or all"
    )
    audit_parser.add_argument("--filter-value", default="", help="Value to match")
    audit_parser.add_argument("--start", help="RFC 3339 lower bound (inclusive, default: open)")
    audit_parser.add_argument("--end", help="RFC 3339 upper bound (inclusive, default: open)")
    audit_parser.add_argument(
        "--chronological", action="store_true", help="Sort by timestamp instead of key"
    )

    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the ledger tool."""
    args = build_parser().parse_args(argv)

    try:
        config = RegistryConfig.from_env()
        if args.backend:
            config.ledger_backend = LedgerBackend(args.backend)
        if args.data_dir:
            config.storage = dataclasses.replace(config.storage, data_dir=args.data_dir)
        config.validate()
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    setup_logging(config)
    config.log_config()

    sys.exit(asyncio.run(run(args, config)))


if __name__ == "__main__":
    main()
