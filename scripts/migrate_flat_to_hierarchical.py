"""
Copy entity collections from the flat layout (one JSON array per collection)
into the hierarchical layout (one directory per collection, one file per
record, plus an ordered index).
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from marketplace.config import get_settings
from marketplace.migration import migrate_collections
from marketplace.records import ENTITIES
from marketplace.storage import FlatFileBackend, HierarchicalBackend, RecordStore

logger = logging.getLogger(__name__)


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Migrate flat JSON to hierarchical storage")
    parser.add_argument(
        "--source-dir",
        default=settings.data_dir,
        help="Directory holding the flat <entity>.json documents",
    )
    parser.add_argument(
        "--target-dir",
        default=None,
        help="Directory for the hierarchical tree (defaults to the source dir)",
    )
    parser.add_argument(
        "--entity",
        action="append",
        choices=sorted(ENTITIES),
        help="Only migrate this collection (repeatable)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report what would be migrated without writing",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")
    timeout = settings.lock_timeout_seconds
    source = RecordStore(FlatFileBackend(args.source_dir), lock_timeout_seconds=timeout)
    target = RecordStore(
        HierarchicalBackend(args.target_dir or args.source_dir),
        lock_timeout_seconds=timeout,
    )

    results = migrate_collections(source, target, args.entity, dry_run=args.dry_run)
    quarantined = sum(r.quarantined for r in results)
    logger.info(
        "Migrated %d records across %d collections (%d quarantined)",
        sum(r.written for r in results),
        len(results),
        quarantined,
    )
    return 1 if quarantined else 0


if __name__ == "__main__":
    raise SystemExit(main())
