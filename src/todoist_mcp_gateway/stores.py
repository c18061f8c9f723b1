"""In-memory stores for authorization codes and access tokens."""

from __future__ import annotations

import logging
from threading import Lock
from typing import Generic, Protocol, TypeVar

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT")


class RecordStore(Protocol[RecordT]):
    def get(self, key: str) -> RecordT | None:
        ...

    def put(self, key: str, record: RecordT) -> None:
        ...

    def delete(self, key: str) -> RecordT | None:
        ...

    def expire(self, key: str) -> None:
        ...

    def __contains__(self, key: object) -> bool:
        ...


class InMemoryRecordStore(Generic[RecordT]):
    """Process-lifetime map of opaque keys to records, guarded by a lock.

    Records are never rewritten after ``put``; callers only read or remove
    them, so the lock only has to keep individual map operations atomic.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._lock = Lock()
        self._records: dict[str, RecordT] = {}

    def get(self, key: str) -> RecordT | None:
        with self._lock:
            return self._records.get(key)

    def put(self, key: str, record: RecordT) -> None:
        with self._lock:
            self._records[key] = record

    def delete(self, key: str) -> RecordT | None:
        with self._lock:
            return self._records.pop(key, None)

    def expire(self, key: str) -> None:
        """Remove a record that was observed past its expiry."""
        if self.delete(key) is not None:
            logger.debug("Expired %s record removed.", self.name)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._records

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)
