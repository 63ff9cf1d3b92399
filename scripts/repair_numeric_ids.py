"""
Rewrite stored ids that were saved as numeric strings ("12") as numbers.

Runs against the configured layout (flat or hierarchical) under the
collection write locks, so it is safe to run next to a live API.
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
from marketplace.dependencies import build_backend
from marketplace.migration import repair_numeric_ids
from marketplace.records import ENTITIES
from marketplace.storage import RecordStore

logger = logging.getLogger(__name__)


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Repair string-typed ids")
    parser.add_argument("--data-dir", default=settings.data_dir)
    parser.add_argument(
        "--layout",
        choices=["flat", "hierarchical"],
        default=settings.storage_layout,
    )
    parser.add_argument(
        "--entity",
        action="append",
        choices=sorted(ENTITIES),
        help="Only repair this collection (repeatable)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Report how many records would change without saving",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")
    store = RecordStore(
        build_backend(args.layout, args.data_dir),
        lock_timeout_seconds=settings.lock_timeout_seconds,
    )

    results = repair_numeric_ids(store, args.entity, dry_run=args.dry_run)
    for result in results:
        if result.repaired or result.invalid:
            logger.info(
                "%s: %d/%d repaired, %d invalid%s",
                result.entity,
                result.repaired,
                result.total,
                result.invalid,
                "" if result.written else " (not written)",
            )
    logger.info("Repaired %d records", sum(r.repaired for r in results))
    return 1 if any(r.invalid for r in results) else 0


if __name__ == "__main__":
    raise SystemExit(main())
