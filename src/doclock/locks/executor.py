"""Critical section executor: batched payload writes guarded by ownership."""

from __future__ import annotations

import logging
from collections.abc import Callable, Hashable, Mapping
from typing import Any

from doclock.core.constants import UPDATE_MESSAGE_TEMPLATE
from doclock.core.exceptions import PartialMutationAnomaly
from doclock.locks.models import TargetSet
from doclock.store.base import DocumentStore, RecordFilter, RecordUpdate, UpdateOperation

# compute_update(key, owner_token) -> payload value, or a mapping of field -> value
ComputeUpdate = Callable[[Hashable, str], Any]


def format_update_message(key: Hashable, owner_token: str) -> str:
    """Default payload: ``"Record <key> was updated by process:<owner>"``."""
    return UPDATE_MESSAGE_TEMPLATE.format(key=key, owner=owner_token)


class CriticalSectionExecutor:
    """Applies per-record payload updates while the caller owns every record.

    Every operation in the batch is conditioned on the record still being
    owned by ``owner_token``. A write that reports fewer matched records
    than the target set holds is raised as ``PartialMutationAnomaly``.
    """

    def __init__(self, store: DocumentStore, logger: logging.Logger | logging.LoggerAdapter | None = None):
        self.store = store
        self.logger = logger or logging.getLogger(__name__)

    def _fields_for(self, value: Any) -> dict[str, Any]:
        if isinstance(value, Mapping):
            return dict(value)
        return {self.store.layout.payload_field: value}

    def build_operations(
        self,
        target_set: TargetSet,
        owner_token: str,
        compute_update: ComputeUpdate = format_update_message,
    ) -> list[UpdateOperation]:
        """Derive one owner-guarded update per key, in target-set order."""
        return [
            (
                RecordFilter.for_keys((key,), owner_token),
                RecordUpdate(set_fields=self._fields_for(compute_update(key, owner_token))),
            )
            for key in target_set
        ]

    def apply_payload(
        self,
        target_set: TargetSet,
        owner_token: str,
        compute_update: ComputeUpdate = format_update_message,
    ) -> int:
        """Write all payload updates in one batch; return the updated count.

        Raises:
            PartialMutationAnomaly: fewer records updated than were locked
            StoreUnavailable: the batch write failed
        """
        operations = self.build_operations(target_set, owner_token, compute_update)
        updated = self.store.batch_conditional_update(operations)
        self.logger.info(f"Updated document count: {updated}/{len(target_set)}")

        if updated != len(target_set):
            anomaly = PartialMutationAnomaly(expected=len(target_set), actual=updated, owner_token=owner_token)
            self.logger.error(f"Ownership invariant violated: {anomaly}")
            raise anomaly
        return updated
