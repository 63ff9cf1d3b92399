"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, Request

from marketplace.config import get_settings
from marketplace.queries import RecordQueries
from marketplace.records import parse_id
from marketplace.storage import (
    CollectionBackend,
    FlatFileBackend,
    HierarchicalBackend,
    InMemoryBackend,
    RecordStore,
)

_record_store: RecordStore | None = None
_queries: RecordQueries | None = None


def build_backend(layout: str, data_dir: str) -> CollectionBackend:
    if layout == "hierarchical":
        return HierarchicalBackend(data_dir)
    return FlatFileBackend(data_dir)


def get_record_store() -> RecordStore:
    """
    Return a singleton record store so every handler shares one backend.
    """
    global _record_store
    if _record_store:
        return _record_store

    settings = get_settings()
    if settings.use_in_memory_backends:
        backend: CollectionBackend = InMemoryBackend()
    else:
        backend = build_backend(settings.storage_layout, settings.data_dir)
    _record_store = RecordStore(
        backend, lock_timeout_seconds=settings.lock_timeout_seconds
    )
    return _record_store


def get_queries(store: RecordStore = Depends(get_record_store)) -> RecordQueries:
    global _queries
    if _queries is None or _queries.store is not store:
        _queries = RecordQueries(store)
    return _queries


def reset_dependencies() -> None:
    """Drop cached singletons so the next request rebuilds them from settings."""
    global _record_store, _queries
    _record_store = None
    _queries = None


def get_session_user_id(request: Request) -> int:
    """
    Read the signed-in user id that the session provider forwards.
    """
    settings = get_settings()
    raw: Optional[str] = request.headers.get(settings.session_header)
    if not raw:
        raise HTTPException(status_code=401, detail="Unauthorized")
    try:
        return parse_id(raw)
    except ValueError:
        raise HTTPException(status_code=401, detail="Unauthorized") from None
