"""Document store abstraction used by the locking protocol.

Design principles:
- Ownership lives in the store: a record is owned by whoever's token is in
  its owner field, and every transition is a conditional write.
- Filters and updates are store-neutral so the same protocol code runs
  against MongoDB and the in-memory store.
- Driver failures surface as ``StoreUnavailable``, never as driver types.
"""

from __future__ import annotations

from collections.abc import Hashable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from doclock.core.config import StoreConfig


@dataclass(frozen=True)
class RecordLayout:
    """Names of the stored fields that make up a lockable record."""

    key_field: str = "_id"
    owner_field: str = "lockStatus"
    timestamp_field: str = "lockTS"
    payload_field: str = "dataPayload"
    free_sentinel: str = "unlocked"

    @classmethod
    def from_config(cls, config: StoreConfig) -> RecordLayout:
        return cls(
            key_field=config.key_field,
            owner_field=config.owner_field,
            timestamp_field=config.timestamp_field,
            payload_field=config.payload_field,
            free_sentinel=config.free_sentinel,
        )

    def free_document(self, key: Hashable, payload: Any = "") -> dict[str, Any]:
        """Build the stored form of a free record."""
        return {
            self.key_field: key,
            self.owner_field: self.free_sentinel,
            self.timestamp_field: None,
            self.payload_field: payload,
        }


@dataclass(frozen=True)
class Record:
    """A persisted, lockable entity as read back from the store."""

    key: Hashable
    owner_token: str | None
    lock_timestamp: datetime | None
    payload: Any
    free_sentinel: str = "unlocked"

    @property
    def is_free(self) -> bool:
        return self.owner_token in (None, self.free_sentinel)

    @classmethod
    def from_document(cls, document: Mapping[str, Any], layout: RecordLayout) -> Record:
        return cls(
            key=document.get(layout.key_field),
            owner_token=document.get(layout.owner_field),
            lock_timestamp=document.get(layout.timestamp_field),
            payload=document.get(layout.payload_field),
            free_sentinel=layout.free_sentinel,
        )


@dataclass(frozen=True)
class RecordFilter:
    """Match records whose key is in ``keys`` and whose owner equals ``owner``."""

    keys: tuple[Hashable, ...]
    owner: str

    @classmethod
    def for_keys(cls, keys: Iterable[Hashable], owner: str) -> RecordFilter:
        return cls(keys=tuple(keys), owner=owner)


@dataclass(frozen=True)
class RecordUpdate:
    """Field assignments applied to every matched record.

    ``now_fields`` are set to the store's current time at write time.
    """

    set_fields: Mapping[str, Any] = field(default_factory=dict)
    now_fields: tuple[str, ...] = ()


UpdateOperation = tuple[RecordFilter, RecordUpdate]


class DocumentStore(Protocol):
    """Conditional-write surface the locking protocol depends on."""

    layout: RecordLayout

    def conditional_update_many(self, record_filter: RecordFilter, update: RecordUpdate) -> int:
        """Apply ``update`` to every matching record; return the matched count.

        Each record transition is atomic. The call is all-or-nothing with
        respect to errors: when it raises, nothing was written.
        """

    def batch_conditional_update(self, operations: Sequence[UpdateOperation]) -> int:
        """Run independent conditional updates in one call; return the total matched count."""

    def find_locked(self, keys: Iterable[Hashable] | None = None) -> list[Record]:
        """Return records whose owner is not the free sentinel."""

    def close(self) -> None:
        """Release client resources."""
