"""MongoDB document store backed by pymongo.

Lock and unlock are single ``update_many`` calls. MongoDB applies each
document update atomically, and when ``update_many`` fails before
writing nothing is modified. Payload updates go out as one ordered
``bulk_write`` of ``UpdateMany`` models.

Counts are taken from ``matched_count`` rather than ``modified_count``:
re-applying an identical payload leaves a document unmodified, and that
must not look like a lost update.
"""

from __future__ import annotations

import logging
from collections.abc import Hashable, Iterable, Sequence
from typing import Any

from pymongo import MongoClient, UpdateMany
from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from doclock.core.config import StoreConfig
from doclock.core.exceptions import StoreUnavailable
from doclock.store.base import Record, RecordFilter, RecordLayout, RecordUpdate, UpdateOperation


class MongoDocumentStore:
    """``DocumentStore`` implementation over a pymongo collection."""

    name = "mongo"

    def __init__(
        self,
        config: StoreConfig | None = None,
        *,
        collection: Collection | None = None,
        client: MongoClient | None = None,
        logger: logging.Logger | None = None,
    ):
        self.config = config or StoreConfig(backend="mongo")
        self.layout = RecordLayout.from_config(self.config)
        self.logger = logger or logging.getLogger(__name__)
        self._owns_client = False

        if collection is None:
            if client is None:
                client = MongoClient(
                    self.config.uri,
                    serverSelectionTimeoutMS=self.config.server_selection_timeout_ms,
                )
                self._owns_client = True
            collection = client[self.config.database][self.config.collection]
        self._client = client
        self.collection = collection

    def _to_query(self, record_filter: RecordFilter) -> dict[str, Any]:
        return {
            self.layout.key_field: {"$in": list(record_filter.keys)},
            self.layout.owner_field: record_filter.owner,
        }

    @staticmethod
    def _to_update(update: RecordUpdate) -> dict[str, Any]:
        document: dict[str, Any] = {}
        if update.set_fields:
            document["$set"] = dict(update.set_fields)
        if update.now_fields:
            document["$currentDate"] = dict.fromkeys(update.now_fields, True)
        return document

    def conditional_update_many(self, record_filter: RecordFilter, update: RecordUpdate) -> int:
        try:
            result = self.collection.update_many(self._to_query(record_filter), self._to_update(update))
        except PyMongoError as e:
            raise StoreUnavailable(
                "MongoDB update_many failed",
                operation="update_many",
                details=str(e),
                original_error=e,
            ) from e
        return result.matched_count

    def batch_conditional_update(self, operations: Sequence[UpdateOperation]) -> int:
        if not operations:
            return 0
        requests = [UpdateMany(self._to_query(f), self._to_update(u)) for f, u in operations]
        try:
            result = self.collection.bulk_write(requests, ordered=True)
        except PyMongoError as e:
            raise StoreUnavailable(
                "MongoDB bulk_write failed",
                operation="bulk_write",
                details=str(e),
                original_error=e,
            ) from e
        return result.matched_count

    def find_locked(self, keys: Iterable[Hashable] | None = None) -> list[Record]:
        query: dict[str, Any] = {self.layout.owner_field: {"$ne": self.layout.free_sentinel}}
        if keys is not None:
            query[self.layout.key_field] = {"$in": list(keys)}
        try:
            return [Record.from_document(doc, self.layout) for doc in self.collection.find(query)]
        except PyMongoError as e:
            raise StoreUnavailable("MongoDB find failed", operation="find", details=str(e), original_error=e) from e

    def seed(self, keys: Iterable[Hashable], payload: Any = "") -> int:
        """Insert free records for keys that do not exist yet; return inserted count."""
        inserted = 0
        for key in keys:
            document = self.layout.free_document(key, payload)
            document.pop(self.layout.key_field)
            try:
                result = self.collection.update_one(
                    {self.layout.key_field: key},
                    {"$setOnInsert": document},
                    upsert=True,
                )
            except PyMongoError as e:
                raise StoreUnavailable(
                    "MongoDB upsert failed", operation="seed", details=str(e), original_error=e
                ) from e
            if result.upserted_id is not None:
                inserted += 1
        return inserted

    def close(self) -> None:
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None
