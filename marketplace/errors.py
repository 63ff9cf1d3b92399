"""
Error taxonomy for the record store and its callers.

Request-level failures (missing parameters, absent records, missing session)
are raised as ``fastapi.HTTPException`` by the route handlers. Everything
below is raised by the storage layer and rendered as a 500 by the app.
"""

from __future__ import annotations

from typing import Any, Optional


class StorageError(Exception):
    """Base class for failures inside the record store."""

    def __init__(self, message: str, *, entity: Optional[str] = None):
        super().__init__(message)
        self.entity = entity


class StorageUnavailable(StorageError):
    """The backing medium could not be read or written."""


class StorageBusy(StorageError):
    """A write could not acquire its collection lock in time."""


class RecordValidationError(StorageError):
    """A record offered for writing does not match its entity schema."""

    def __init__(
        self, message: str, *, entity: Optional[str] = None, record: Any = None
    ):
        super().__init__(message, entity=entity)
        self.record = record


class InvalidRecordShape(StorageError):
    """A stored record was readable but its payload has the wrong shape."""
