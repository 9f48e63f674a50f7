#!/usr/bin/env python3
"""
Restore vote records from an administrative export.

Reads the JSON list returned by GET /api/v1/data (or produced by the remote
backup) and writes every record back into the votes store, keyed by identity.
Existing records are overwritten.

Run it while the ingestion API is stopped: the aggregate cache is only
rebuilt from the store when the API starts.

Usage:
    python scripts/restore_votes.py EXPORT.json [--dsn DSN] [--dry-run]

Environment Variables:
    POSTGRES_HOST, POSTGRES_PORT, POSTGRES_DB, POSTGRES_USER, POSTGRES_PASSWORD
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Iterator, List

from tqdm import tqdm

from voters.shared import VoteRecord, StoreError
from voters.ingestion_api.database import Database


def read_export(path: Path) -> List[dict]:
    """
    Read an export file.

    Accepts a bare JSON list or a dict with a 'votes' key.
    """
    with open(path, 'r') as f:
        data = json.load(f)

    if isinstance(data, dict) and 'votes' in data:
        data = data['votes']
    if not isinstance(data, list):
        raise ValueError(f"Unexpected export format in {path}: expected a list of records")
    return data


def iter_records(entries: List[dict]) -> Iterator[VoteRecord]:
    """Yield valid records, reporting the entries that are not."""
    for position, entry in enumerate(entries):
        try:
            yield VoteRecord.from_dict(entry)
        except (KeyError, TypeError) as e:
            print(f"✗ Skipping entry #{position}: missing field {e}", file=sys.stderr)


async def restore(records: List[VoteRecord], dsn: str = None) -> dict:
    """
    Write records into the store.

    Returns:
        dict: Statistics about the restore
    """
    stats = {'restored': 0, 'finalized': 0, 'errors': 0}

    database = Database(dsn)
    await database.initialize()
    try:
        for record in tqdm(records, desc="Restoring votes", unit="vote"):
            try:
                await database.put(record.identity, record)
            except StoreError as e:
                print(f"✗ Failed to restore {record.identity}: {e}", file=sys.stderr)
                stats['errors'] += 1
                continue
            stats['restored'] += 1
            if record.is_finalized:
                stats['finalized'] += 1
    finally:
        await database.close()

    return stats


def main():
    parser = argparse.ArgumentParser(description="Restore vote records from an export file")
    parser.add_argument('export', type=Path, help="JSON export file")
    parser.add_argument('--dsn', default=None, help="PostgreSQL DSN (default: from environment)")
    parser.add_argument('--dry-run', action='store_true', help="Validate the file without writing")
    args = parser.parse_args()

    if not args.export.exists():
        print(f"✗ Export file does not exist: {args.export}", file=sys.stderr)
        sys.exit(1)

    try:
        records = list(iter_records(read_export(args.export)))
    except (json.JSONDecodeError, ValueError) as e:
        print(f"✗ Error reading export: {e}", file=sys.stderr)
        sys.exit(1)

    finalized = sum(1 for record in records if record.is_finalized)
    print(f"Found {len(records):,} records ({finalized:,} finalized)")

    if args.dry_run:
        print("✓ Dry run, nothing written")
        return

    stats = asyncio.run(restore(records, args.dsn))
    print(f"✓ Restored {stats['restored']:,} records ({stats['finalized']:,} finalized), {stats['errors']} errors")
    if stats['errors']:
        sys.exit(1)


if __name__ == '__main__':
    main()
