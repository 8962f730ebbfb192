"""Release guard: return a target set to the free sentinel on every exit path."""

from __future__ import annotations

import logging
import time
from collections.abc import Hashable, Iterable, Iterator
from contextlib import contextmanager

from doclock.core.config import ReleaseConfig
from doclock.core.exceptions import StoreUnavailable
from doclock.locks.models import TargetSet
from doclock.store.base import DocumentStore, RecordFilter, RecordUpdate


class ReleaseGuard:
    """Releases every record in a target set still owned by the caller.

    The release is conditioned on the caller's owner token, so it is
    idempotent and never frees a record somebody else holds. Failures are
    retried a few times, then logged with the keys that may now be
    orphaned. ``unlock`` never raises ``StoreUnavailable``.
    """

    def __init__(
        self,
        store: DocumentStore,
        config: ReleaseConfig | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self.store = store
        self.config = config or ReleaseConfig()
        self.logger = logger or logging.getLogger(__name__)
        # Result of the most recent unlock; None before the first one
        self.last_unlock_ok: bool | None = None

    def _release_write(self, target_set: TargetSet, owner_token: str) -> int:
        layout = self.store.layout
        return self.store.conditional_update_many(
            RecordFilter.for_keys(target_set, owner_token),
            RecordUpdate(set_fields={layout.owner_field: layout.free_sentinel, layout.timestamp_field: None}),
        )

    def unlock(self, target_set: TargetSet | Iterable[Hashable], owner_token: str) -> bool:
        """Release records owned by ``owner_token``; return False when they may be orphaned."""
        self.last_unlock_ok = self._unlock(target_set, owner_token)
        return self.last_unlock_ok

    def _unlock(self, target_set: TargetSet | Iterable[Hashable], owner_token: str) -> bool:
        targets = TargetSet.coerce(target_set)
        attempts = max(1, self.config.attempts)

        for attempt in range(1, attempts + 1):
            try:
                released = self._release_write(targets, owner_token)
            except StoreUnavailable as e:
                if attempt == attempts:
                    self.logger.error(
                        f"Unlock failed after {attempts} attempt(s); records {list(targets.keys)} "
                        f"may stay locked by {owner_token} until swept: {e}"
                    )
                    return False
                self.logger.warning(
                    f"Unlock attempt {attempt}/{attempts} failed: {e}. Retrying in {self.config.pause_seconds:.1f}s..."
                )
                time.sleep(self.config.pause_seconds)
                continue

            self.logger.debug(f"Released {released} record(s) held by {owner_token}")
            return True

        return False

    @contextmanager
    def holding(self, target_set: TargetSet | Iterable[Hashable], owner_token: str) -> Iterator[TargetSet]:
        """Run the body with the release already registered.

        The release runs whether the body returns or raises. While an
        exception is propagating, any error from the release itself is
        logged and dropped so it cannot replace the original failure.
        """
        targets = TargetSet.coerce(target_set)
        self.last_unlock_ok = None
        try:
            yield targets
        except BaseException:
            try:
                self.unlock(targets, owner_token)
            except Exception:
                self.logger.exception(f"Unexpected error releasing {list(targets.keys)} after a failed critical section")
            raise
        else:
            self.unlock(targets, owner_token)
