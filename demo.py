#!/usr/bin/env python3
"""
DocRegistry Demo - Shows document creation, state changes and audit queries.

This demo drives the contracts directly against a SQLite ledger in a
temporary directory; no network host is involved.
"""

import asyncio
import json
import tempfile
from datetime import datetime, timedelta, timezone

from chaincode.docregistry.ledger import SqliteLedger
from chaincode.docregistry.registry import (
    AuditOrder,
    DocumentNotFoundError,
    PrivateDocumentContract,
    PublicDocumentContract,
    QueryEngine,
)


async def main():
    print("=" * 60)
    print("DocRegistry Demo - Documents and Audit Trail")
    print("=" * 60)
    print()

    with tempfile.TemporaryDirectory() as data_dir:
        print(f"[Setup] Using data directory: {data_dir}")

        ledger = SqliteLedger(data_dir)
        await ledger.connect()

        engine = QueryEngine(page_size=100)
        public = PublicDocumentContract(query_engine=engine)
        private = PrivateDocumentContract(query_engine=engine)
        t0 = datetime.now(timezone.utc).replace(microsecond=0)

        # Public document
        print("\n[Step 1] Creating public document d1...")
        async with ledger.transaction(timestamp=t0) as ctx:
            await public.create_document(ctx, "d1", "BankA", "u1")
            print(f"  - Committed in transaction {ctx.tx_id[:16]}...")

        async with ledger.transaction() as ctx:
            doc = await public.get_document_by_id(ctx, "d1")
            entries = await public.query_audit_logs(ctx, "documentId", "d1", None, None)
        print(f"  - getDocumentById: {json.dumps(doc.to_dict())}")
        print(f"  - Audit entries: {len(entries)} ({entries[0].operation.value})")

        # Private document lifecycle
        print("\n[Step 2] Creating private document d2 in state DRAFT...")
        async with ledger.transaction(timestamp=t0 + timedelta(seconds=1)) as ctx:
            await private.create_document(
                ctx, "d2", "BankB", "u2", "file.pdf", "/path", "h123", "DRAFT"
            )

        print("\n[Step 3] Moving d2 to APPROVED...")
        async with ledger.transaction(timestamp=t0 + timedelta(seconds=2)) as ctx:
            await private.update_state(ctx, "d2", "APPROVED")

        async with ledger.transaction() as ctx:
            doc = await private.get_document_by_id(ctx, "d2")
            entries = await private.query_audit_logs(
                ctx,
                "documentId",
                "d2",
                t0.strftime("%Y-%m-%dT%H:%M:%SZ"),
                (t0 + timedelta(seconds=2)).strftime("%Y-%m-%dT%H:%M:%SZ"),
                order=AuditOrder.TIMESTAMP,
            )
        print(f"  - Current state: {doc.state}")
        print("-" * 50)
        for entry in entries:
            print(f"  {entry.timestamp}  {entry.operation.value:<13} "
                  f"{entry.old_state or '-':<8} -> {entry.new_state}")
        print()

        # Empty window
        print("[Step 4] Querying audit entries in a future window...")
        async with ledger.transaction() as ctx:
            entries = await private.query_audit_logs(
                ctx, "all", "", "2999-01-01T00:00:00Z", "2999-12-31T00:00:00Z"
            )
        print(f"  - Entries: {entries}")

        # Empty query
        print("\n[Step 5] Querying documents of user 'nobody'...")
        async with ledger.transaction() as ctx:
            docs = await public.query_by_user(ctx, "nobody")
        print(f"  - Documents: {docs}")

        print("\n[Step 6] Looking up a missing document...")
        async with ledger.transaction() as ctx:
            try:
                await private.get_document_by_id(ctx, "ghost")
            except DocumentNotFoundError as e:
                print(f"  - {e.code}: {e.message}")

        stats = await ledger.get_stats()
        print(f"\n[Done] Ledger holds {stats['keys']} keys from {stats['transactions']} transactions")
        await ledger.close()


if __name__ == "__main__":
    asyncio.run(main())
