#!/usr/bin/env python3
"""
Maintenance script: verify that every collection has gap-free positions.

Reports collections whose positions have gaps, duplicates or the wrong
starting value, and re-packs them in place with --fix.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from what2watch.config import load_settings, setup_logging
from what2watch.db import connect
from what2watch.models import collection_from_row, init_db
from what2watch.ordering import is_densely_packed, repack_positions
from what2watch.services import apply_position_updates, list_entries

logger = logging.getLogger("what2watch.maintenance")


def scan(conn, fix: bool = False) -> int:
    """Return the number of collections that violated the position invariant."""
    broken = 0
    for row in conn.execute("SELECT * FROM collections ORDER BY collection_id").fetchall():
        collection = collection_from_row(row)
        entries = list_entries(conn, collection.id)
        if is_densely_packed([e.position for e in entries], base=collection.base):
            continue
        broken += 1
        positions = [e.position for e in entries]
        logger.warning(
            f"{collection.kind} {collection.id} ({collection.name!r}) has positions {positions}, "
            f"expected a run from {collection.base}"
        )
        if fix:
            updates = repack_positions(entries, base=collection.base)
            with conn:
                apply_position_updates(conn, collection.id, updates)
            logger.info(f"Re-packed {len(updates)} item(s) in {collection.kind} {collection.id}")
    return broken


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Check and repair collection item positions")
    parser.add_argument("--db", help="Path to the SQLite database (default: DATABASE_PATH setting)")
    parser.add_argument("--fix", action="store_true", help="Re-pack collections that have gaps")
    args = parser.parse_args(argv)

    settings = load_settings({"DATABASE_PATH": args.db} if args.db else None)
    setup_logging(settings)

    db_path = settings["DATABASE_PATH"]
    if not Path(db_path).exists():
        logger.error(f"Database file not found at {db_path}")
        return 1

    conn = connect(db_path)
    try:
        init_db(conn)
        broken = scan(conn, fix=args.fix)
    finally:
        conn.close()

    if broken == 0:
        logger.info("[OK] All collections are densely packed")
        return 0
    if args.fix:
        logger.info(f"[OK] Repaired {broken} collection(s)")
        return 0
    logger.warning(f"{broken} collection(s) need repair; rerun with --fix")
    return 2


if __name__ == "__main__":
    sys.exit(main())
