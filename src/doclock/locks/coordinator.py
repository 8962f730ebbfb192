"""Lock coordinator: claim a whole target set with one conditional write."""

from __future__ import annotations

import logging
from collections.abc import Hashable, Iterable

from doclock.core.exceptions import ConfigurationError, StoreUnavailable
from doclock.locks.models import TargetSet
from doclock.store.base import DocumentStore, RecordFilter, RecordUpdate


class LockCoordinator:
    """Marks free records in a target set as owned by the caller.

    The claim is a single ``conditional_update_many``: records whose key is
    in the target set and whose owner is the free sentinel get the caller's
    token and a store-side timestamp. Two coordinators racing for the same
    record can never both win it, but one may win a strict subset of its
    target set. Whatever subset was won stays claimed until the release
    guard runs, so callers must always release after ``try_lock``.
    """

    def __init__(self, store: DocumentStore, logger: logging.Logger | logging.LoggerAdapter | None = None):
        self.store = store
        self.logger = logger or logging.getLogger(__name__)

    def validate_owner(self, owner_token: str) -> None:
        if not owner_token or owner_token == self.store.layout.free_sentinel:
            raise ConfigurationError(
                "Owner token must be a non-empty value distinct from the free sentinel",
                field="owner_token",
                details=repr(owner_token),
            )

    def try_lock(self, target_set: TargetSet | Iterable[Hashable], owner_token: str) -> int:
        """Attempt to claim every record in ``target_set``; return the claimed count.

        Raises:
            StoreUnavailable: the lock write could not complete
        """
        targets = TargetSet.coerce(target_set)
        self.validate_owner(owner_token)
        layout = self.store.layout

        record_filter = RecordFilter.for_keys(targets, layout.free_sentinel)
        update = RecordUpdate(
            set_fields={layout.owner_field: owner_token},
            now_fields=(layout.timestamp_field,),
        )
        try:
            claimed = self.store.conditional_update_many(record_filter, update)
        except StoreUnavailable as e:
            self.logger.warning(f"Lock write failed for {len(targets)} record(s): {e}")
            raise

        self.logger.info(f"Locked document count: {claimed}/{len(targets)}")
        return claimed

    @staticmethod
    def is_full_claim(target_set: TargetSet, claimed_count: int) -> bool:
        return claimed_count == len(target_set)
