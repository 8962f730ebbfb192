"""In-process document store.

Each call runs under one internal lock, which gives the same guarantees a
real store provides server-side: every conditional write is atomic per
record and a whole ``update_many`` call is applied at once. The protocol
code itself never takes this lock.
"""

from __future__ import annotations

import copy
import threading
from collections.abc import Callable, Hashable, Iterable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any

from doclock.store.base import Record, RecordFilter, RecordLayout, RecordUpdate, UpdateOperation


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MemoryDocumentStore:
    """Dictionary-backed store honoring the ``DocumentStore`` protocol."""

    name = "memory"

    def __init__(
        self,
        layout: RecordLayout | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.layout = layout or RecordLayout()
        self._clock = clock
        self._documents: dict[Hashable, dict[str, Any]] = {}
        self._lock = threading.Lock()
        self.write_calls = 0

    def seed(self, keys: Iterable[Hashable], payload: Any = "") -> int:
        """Insert free records for keys that do not exist yet; return inserted count."""
        inserted = 0
        with self._lock:
            for key in keys:
                if key in self._documents:
                    continue
                self._documents[key] = self.layout.free_document(key, payload)
                inserted += 1
        return inserted

    def put(self, document: Mapping[str, Any]) -> None:
        """Insert or replace a raw document."""
        with self._lock:
            self._documents[document[self.layout.key_field]] = dict(document)

    def get(self, key: Hashable) -> Record | None:
        with self._lock:
            document = self._documents.get(key)
            if document is None:
                return None
            return Record.from_document(copy.deepcopy(document), self.layout)

    def records(self) -> list[Record]:
        with self._lock:
            return [Record.from_document(copy.deepcopy(doc), self.layout) for doc in self._documents.values()]

    def _matches(self, document: Mapping[str, Any], record_filter: RecordFilter) -> bool:
        return (
            document.get(self.layout.key_field) in record_filter.keys
            and document.get(self.layout.owner_field) == record_filter.owner
        )

    def _apply(self, record_filter: RecordFilter, update: RecordUpdate) -> int:
        now = self._clock()
        matched = 0
        for key in dict.fromkeys(record_filter.keys):
            document = self._documents.get(key)
            if document is None or not self._matches(document, record_filter):
                continue
            document.update(update.set_fields)
            for field_name in update.now_fields:
                document[field_name] = now
            matched += 1
        return matched

    def conditional_update_many(self, record_filter: RecordFilter, update: RecordUpdate) -> int:
        with self._lock:
            self.write_calls += 1
            return self._apply(record_filter, update)

    def batch_conditional_update(self, operations: Sequence[UpdateOperation]) -> int:
        with self._lock:
            self.write_calls += 1
            return sum(self._apply(record_filter, update) for record_filter, update in operations)

    def find_locked(self, keys: Iterable[Hashable] | None = None) -> list[Record]:
        wanted = None if keys is None else set(keys)
        with self._lock:
            return [
                Record.from_document(copy.deepcopy(doc), self.layout)
                for key, doc in self._documents.items()
                if (wanted is None or key in wanted) and doc.get(self.layout.owner_field) != self.layout.free_sentinel
            ]

    def close(self) -> None:
        return None
