"""
Maintenance operations over whole collections: moving the flat layout into
the hierarchical one, and rewriting string-typed ids as numbers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from pydantic import ValidationError

from marketplace.records import ENTITIES, get_entity
from marketplace.storage import RecordStore

logger = logging.getLogger(__name__)


@dataclass
class MigrationResult:
    entity: str
    read: int
    written: int
    quarantined: int


@dataclass
class RepairResult:
    entity: str
    total: int
    repaired: int
    invalid: int
    written: bool


def _entity_names(entities: Optional[Iterable[str]]) -> list[str]:
    if not entities:
        return list(ENTITIES)
    return [get_entity(name).name for name in entities]


def migrate_collections(
    source: RecordStore,
    target: RecordStore,
    entities: Optional[Iterable[str]] = None,
    *,
    dry_run: bool = False,
) -> list[MigrationResult]:
    """
    Copy each collection from ``source`` into ``target``.

    The target ends up mirroring the source: a collection that is empty in
    the source is emptied in the target too.
    """
    results: list[MigrationResult] = []
    for entity in _entity_names(entities):
        raw = source.backend.load_documents(entity) or []
        records = source.read_collection(entity)
        written = 0
        if not dry_run and (
            records or target.backend.load_documents(entity) is not None
        ):
            written = len(target.write_collection(entity, records))
        result = MigrationResult(
            entity=entity,
            read=len(raw),
            written=written,
            quarantined=len(raw) - len(records),
        )
        if result.quarantined:
            logger.warning(
                "%s: %d records failed validation and were not migrated",
                entity,
                result.quarantined,
            )
        logger.info(
            "%s: read %d, wrote %d%s",
            entity,
            result.read,
            result.written,
            " (dry run)" if dry_run else "",
        )
        results.append(result)
    return results


def repair_numeric_ids(
    store: RecordStore,
    entities: Optional[Iterable[str]] = None,
    *,
    dry_run: bool = False,
) -> list[RepairResult]:
    """
    Rewrite records whose id fields were stored as numeric strings.

    A collection holding any record that cannot be parsed is reported and left
    untouched so nothing is dropped.
    """
    results: list[RepairResult] = []
    for entity in _entity_names(entities):
        spec = get_entity(entity)
        with store.backend.write_lock(entity, store.lock_timeout_seconds):
            raw = store.backend.load_documents(entity) or []
            repaired_docs: list[dict] = []
            repaired = invalid = 0
            for document in raw:
                try:
                    fixed = spec.model.model_validate(document).to_document()
                except ValidationError:
                    invalid += 1
                    continue
                if fixed != document:
                    repaired += 1
                repaired_docs.append(fixed)

            should_write = bool(repaired) and not invalid and not dry_run
            if should_write:
                store.backend.save_documents(entity, repaired_docs)
        if invalid:
            logger.warning(
                "%s: %d records cannot be repaired; collection left as is",
                entity,
                invalid,
            )
        results.append(
            RepairResult(
                entity=entity,
                total=len(raw),
                repaired=repaired,
                invalid=invalid,
                written=should_write,
            )
        )
    return results
