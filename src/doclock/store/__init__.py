"""Document store backends for the locking protocol.

Backends are selected with ``create_store`` from explicit configuration or
the ``DOCLOCK_STORE_BACKEND`` environment override.
"""

from __future__ import annotations

import logging
import os

from doclock.core.config import StoreConfig
from doclock.core.constants import STORE_BACKEND_ENV, SUPPORTED_STORE_BACKENDS
from doclock.core.exceptions import ConfigurationError
from doclock.store.base import (
    DocumentStore,
    Record,
    RecordFilter,
    RecordLayout,
    RecordUpdate,
    UpdateOperation,
)
from doclock.store.memory import MemoryDocumentStore


def create_store(
    config: StoreConfig | None = None,
    backend_name: str | None = None,
    *,
    logger: logging.Logger | None = None,
) -> DocumentStore:
    """Create a store backend.

    Priority: 1) ``backend_name``, 2) ``DOCLOCK_STORE_BACKEND``, 3) ``config.backend``.
    """
    log = logger or logging.getLogger(__name__)
    config = config or StoreConfig()
    requested = (backend_name or os.environ.get(STORE_BACKEND_ENV) or config.backend or "memory").strip().lower()

    if requested == "memory":
        log.debug("Using in-memory document store")
        return MemoryDocumentStore(RecordLayout.from_config(config))

    if requested == "mongo":
        # Imported lazily so the memory backend works without a driver round-trip.
        from doclock.store.mongo import MongoDocumentStore

        log.debug(f"Using MongoDB store {config.database}.{config.collection}")
        return MongoDocumentStore(config, logger=log)

    raise ConfigurationError(
        f"Unknown store backend '{requested}'",
        field="backend",
        details=f"expected one of {', '.join(SUPPORTED_STORE_BACKENDS)}",
    )


__all__ = [
    "DocumentStore",
    "MemoryDocumentStore",
    "Record",
    "RecordFilter",
    "RecordLayout",
    "RecordUpdate",
    "UpdateOperation",
    "create_store",
]
