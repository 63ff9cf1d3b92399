"""
Record store for entity collections, with flat-file, hierarchical and
in-memory backends.

Backends move raw JSON documents; ``RecordStore`` validates them against the
entity models in ``marketplace.records`` and serializes writers per
collection.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import string
import tempfile
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional, Protocol, Sequence, Union

import filelock
from pydantic import ValidationError

from marketplace.errors import RecordValidationError, StorageBusy, StorageUnavailable
from marketplace.records import EntitySpec, Record, get_entity

logger = logging.getLogger(__name__)

_LOCK_SUFFIX = ".lock"
_SAFE_KEY_CHARS = frozenset(string.ascii_letters + string.digits + "_-")
_GENERATION_RE = re.compile(r"^g([0-9]+)$")


class CollectionBackend(Protocol):
    """Defines the raw document operations the record store needs."""

    def load_documents(self, entity: str) -> Optional[list]:
        """Return the stored documents, or None when nothing is stored yet."""
        ...

    def save_documents(self, entity: str, documents: list[dict]) -> None:
        ...

    def write_lock(self, entity: str, timeout: float):
        ...


def _atomic_write_text(path: Path, content: str) -> None:
    """Write ``content`` to a temp file beside ``path`` and rename it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _read_json(path: Path, entity: str):
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise StorageUnavailable(
            f"Could not read {path}: {exc}", entity=entity
        ) from exc


@contextmanager
def _file_lock(lock_path: Path, entity: str, timeout: float) -> Iterator[None]:
    lock = filelock.FileLock(str(lock_path))
    try:
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        lock.acquire(timeout=timeout)
    except filelock.Timeout as exc:
        raise StorageBusy(
            f"Timed out after {timeout}s waiting for the {entity} write lock",
            entity=entity,
        ) from exc
    except OSError as exc:
        raise StorageUnavailable(
            f"Could not lock {lock_path}: {exc}", entity=entity
        ) from exc
    try:
        yield
    finally:
        lock.release()


def _encode_key(key: str) -> str:
    """Percent-encode everything except ASCII letters, digits, ``_`` and ``-``."""
    return "".join(
        char if char in _SAFE_KEY_CHARS else "".join(f"%{b:02X}" for b in char.encode("utf-8"))
        for char in key
    )


@dataclass
class InMemoryBackend:
    """Test double keeping each collection as a decoded JSON array."""

    collections: dict = field(default_factory=dict)

    def __post_init__(self):
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def load_documents(self, entity: str) -> Optional[list]:
        stored = self.collections.get(entity)
        if stored is None:
            return None
        return json.loads(json.dumps(stored))

    def save_documents(self, entity: str, documents: list[dict]) -> None:
        # Mimic serialization so callers never share references with the store.
        self.collections[entity] = json.loads(json.dumps(documents))

    @contextmanager
    def write_lock(self, entity: str, timeout: float) -> Iterator[None]:
        with self._locks_guard:
            lock = self._locks.setdefault(entity, threading.Lock())
        if not lock.acquire(timeout=timeout):
            raise StorageBusy(
                f"Timed out after {timeout}s waiting for the {entity} write lock",
                entity=entity,
            )
        try:
            yield
        finally:
            lock.release()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.collections.clear()


class FlatFileBackend:
    """One JSON document per collection: ``<data_dir>/<entity>.json``."""

    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)

    def path_for(self, entity: str) -> Path:
        return self.data_dir / f"{entity}.json"

    def load_documents(self, entity: str) -> Optional[list]:
        path = self.path_for(entity)
        if not path.exists():
            return None
        documents = _read_json(path, entity)
        if not isinstance(documents, list):
            raise StorageUnavailable(
                f"{path} does not hold a JSON array", entity=entity
            )
        return documents

    def save_documents(self, entity: str, documents: list[dict]) -> None:
        path = self.path_for(entity)
        try:
            _atomic_write_text(path, json.dumps(documents, indent=2))
        except OSError as exc:
            raise StorageUnavailable(
                f"Could not write {path}: {exc}", entity=entity
            ) from exc

    def write_lock(self, entity: str, timeout: float):
        path = self.path_for(entity)
        return _file_lock(path.with_suffix(path.suffix + _LOCK_SUFFIX), entity, timeout)


class HierarchicalBackend:
    """
    One directory per collection and one file per record.

    Every commit writes a fresh generation directory ``g<N>`` holding
    ``<YYYY>/<MM>/<DD>/<key>/record.json`` for records with a parseable
    ``createdAt`` and ``<key>/record.json`` otherwise. Keys are
    percent-encoded so each maps to exactly one directory name.
    ``index.json`` lists the record paths in collection order; writing it
    commits the collection.

    The generation named by the previous index is kept until the next commit
    so lock-free readers holding that index can still resolve it; older
    generations are removed.
    """

    INDEX_NAME = "index.json"
    RECORD_NAME = "record.json"
    READ_ATTEMPTS = 3

    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)

    def entity_dir(self, entity: str) -> Path:
        return self.data_dir / entity

    def index_path(self, entity: str) -> Path:
        return self.entity_dir(entity) / self.INDEX_NAME

    @staticmethod
    def _date_parts(created_at) -> tuple[str, ...]:
        if not isinstance(created_at, str) or not created_at:
            return ()
        try:
            parsed = datetime.fromisoformat(created_at.replace("Z", "+00:00"))
        except ValueError:
            return ()
        return (f"{parsed.year:04d}", f"{parsed.month:02d}", f"{parsed.day:02d}")

    def relative_path_for(self, spec: EntitySpec, document, position: int = 0) -> str:
        """
        Path of ``document`` inside a generation directory.

        Documents without a usable key get ``~<position>``; ``~`` never
        survives key encoding, so the two cannot collide.
        """
        key = spec.key_or_none(document)
        if key is None:
            return f"~{position}/{self.RECORD_NAME}"
        created_at = document.get("createdAt")
        parts = self._date_parts(created_at) + (_encode_key(key), self.RECORD_NAME)
        return "/".join(parts)

    def _layout(self, spec: EntitySpec, documents: list) -> list[str]:
        paths: list[str] = []
        seen: set[str] = set()
        for position, document in enumerate(documents):
            rel_path = self.relative_path_for(spec, document, position)
            if rel_path in seen:
                # Repeated keys only come from unreadable records carried through.
                rel_path = self.relative_path_for(spec, None, position)
            seen.add(rel_path)
            paths.append(rel_path)
        return paths

    def _read_index(self, entity: str) -> Optional[list]:
        path = self.index_path(entity)
        if not path.exists():
            return None
        index = _read_json(path, entity)
        if not isinstance(index, list) or not all(isinstance(p, str) for p in index):
            raise StorageUnavailable(
                f"{path} is not a list of record paths", entity=entity
            )
        return index

    @staticmethod
    def _read_record(path: Path, entity: str):
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise
        except OSError as exc:
            raise StorageUnavailable(
                f"Could not read {path}: {exc}", entity=entity
            ) from exc
        try:
            return json.loads(text)
        except ValueError as exc:
            raise StorageUnavailable(
                f"Could not decode {path}: {exc}", entity=entity
            ) from exc

    def load_documents(self, entity: str) -> Optional[list]:
        base = self.entity_dir(entity)
        for _ in range(self.READ_ATTEMPTS):
            index = self._read_index(entity)
            if index is None:
                return None
            try:
                return [self._read_record(base / rel_path, entity) for rel_path in index]
            except FileNotFoundError:
                logger.debug("%s index moved on during read; reloading", entity)
        raise StorageUnavailable(
            f"{entity} index keeps naming missing records", entity=entity
        )

    def _generations(self, base: Path) -> dict[str, Path]:
        if not base.is_dir():
            return {}
        return {
            child.name: child
            for child in base.iterdir()
            if _GENERATION_RE.match(child.name) and child.is_dir()
        }

    def save_documents(self, entity: str, documents: list[dict]) -> None:
        spec = get_entity(entity)
        base = self.entity_dir(entity)
        try:
            previous = self._read_index(entity) or []
        except StorageUnavailable:
            logger.warning("Rebuilding unreadable %s index", entity)
            previous = []

        try:
            existing = self._generations(base)
            number = max(
                (int(_GENERATION_RE.match(name).group(1)) for name in existing),
                default=0,
            )
            generation = f"g{number + 1:06d}"
            paths = [f"{generation}/{p}" for p in self._layout(spec, documents)]
            for rel_path, document in zip(paths, documents):
                _atomic_write_text(base / rel_path, json.dumps(document, indent=2))
            _atomic_write_text(self.index_path(entity), json.dumps(paths, indent=2))
        except OSError as exc:
            raise StorageUnavailable(
                f"Could not write {entity} under {base}: {exc}", entity=entity
            ) from exc

        keep = {generation} | {p.split("/", 1)[0] for p in previous}
        for name, path in existing.items():
            if name in keep:
                continue
            try:
                shutil.rmtree(path)
            except OSError:
                logger.warning("Could not remove old %s generation %s", entity, path)

    def iter_record_files(self, entity: str) -> Iterator[Path]:
        """Yield every record file on disk, indexed or not."""
        base = self.entity_dir(entity)
        if base.exists():
            yield from sorted(base.rglob(self.RECORD_NAME))

    def write_lock(self, entity: str, timeout: float):
        return _file_lock(
            self.data_dir / f"{entity}{_LOCK_SUFFIX}", entity, timeout
        )


Mutator = Callable[[list], Optional[Sequence]]


class RecordStore:
    """
    Durable storage of entity collections, independent of physical layout.

    Reads take no lock. Writes to one collection are serialized, and a writer
    that cannot get its slot within ``lock_timeout_seconds`` fails with
    ``StorageBusy``. Keys are unique within a collection.
    """

    def __init__(self, backend: CollectionBackend, *, lock_timeout_seconds: float = 5.0):
        self.backend = backend
        self.lock_timeout_seconds = lock_timeout_seconds

    def read_collection(self, entity: str) -> list[Record]:
        records, _ = self._load(get_entity(entity))
        return records

    def write_collection(self, entity: str, records: Iterable) -> list[Record]:
        spec = get_entity(entity)
        validated = self._validate_all(spec, records)
        with self.backend.write_lock(entity, self.lock_timeout_seconds):
            self._commit(spec, validated)
        return validated

    def update_collection(self, entity: str, mutator: Mutator) -> list[Record]:
        """
        Read-modify-write ``entity`` while holding its write lock.

        ``mutator`` receives the current records and returns the new list, or
        None to leave the collection untouched. Stored documents that fail
        validation are written back as they are, after the new records,
        unless a new record takes over their key.
        """
        spec = get_entity(entity)
        with self.backend.write_lock(entity, self.lock_timeout_seconds):
            current, quarantined = self._load(spec)
            updated = mutator(list(current))
            if updated is None:
                return current
            validated = self._validate_all(spec, updated)
            keys = {spec.key_for(r.to_document()) for r in validated}
            carried = [d for d in quarantined if spec.key_or_none(d) not in keys]
            if carried:
                logger.info(
                    "Keeping %d unreadable %s records in place", len(carried), entity
                )
            self._commit(spec, validated, carried)
            return validated

    def _load(self, spec: EntitySpec) -> tuple[list[Record], list]:
        documents = self.backend.load_documents(spec.name) or []
        records: list[Record] = []
        quarantined: list = []
        for position, document in enumerate(documents):
            try:
                records.append(spec.model.model_validate(document))
            except ValidationError as exc:
                logger.warning(
                    "Quarantined malformed %s record at position %d: %s",
                    spec.name,
                    position,
                    exc.errors(include_url=False),
                )
                quarantined.append(document)
        return records, quarantined

    def _commit(self, spec: EntitySpec, records: list[Record], extra: Sequence = ()) -> None:
        documents = [r.to_document() for r in records] + list(extra)
        self.backend.save_documents(spec.name, documents)
        logger.debug("Committed %d %s records", len(records), spec.name)

    @staticmethod
    def _validate_all(spec: EntitySpec, records: Iterable) -> list[Record]:
        validated: list[Record] = []
        seen: set[str] = set()
        for record in records:
            document = record.to_document() if isinstance(record, Record) else record
            try:
                parsed = spec.model.model_validate(document)
            except ValidationError as exc:
                raise RecordValidationError(
                    f"Invalid {spec.name} record: {exc.errors(include_url=False)}",
                    entity=spec.name,
                    record=document,
                ) from exc
            key = spec.key_for(parsed.to_document())
            if key in seen:
                raise RecordValidationError(
                    f"Duplicate {spec.name} key {key!r}",
                    entity=spec.name,
                    record=document,
                )
            seen.add(key)
            validated.append(parsed)
        return validated
