#!/usr/bin/env python3
"""Point the coverage_sites id sequence back at MAX(id).

Rows written with explicit ids (restores, copies from another database)
leave the sequence behind, and the next insert fails with a duplicate key.
The bulk import already does this after every run; this script is for
repairs after manual loads.

Usage:
    python scripts/fix_sequence.py
"""

import asyncio
import sys
from pathlib import Path

# Ensure the backend package is importable
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.database import async_session_maker, close_db  # noqa: E402
from app.services.coverage_store import CoverageStore  # noqa: E402


async def fix_sequence() -> int:
    """Resync the sequence and return a process exit code."""
    try:
        async with async_session_maker() as session:
            async with session.begin():
                store = CoverageStore(session)
                rows = await store.count()
                value = await store.resync_id_sequence()
    finally:
        await close_db()

    if value is None:
        print("Database has no id sequence to fix (not PostgreSQL).")
        return 1
    print(f"coverage_sites: {rows} rows, id sequence now at {value}.")
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(fix_sequence()))
