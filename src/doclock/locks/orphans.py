"""Orphaned lock sweep.

A lock is orphaned when its owner died or never ran its release. Records
are reclaimed when the lock is older than the stale threshold, or when the
owner token names a process on this host that is no longer running.
"""

from __future__ import annotations

import logging
import socket
from collections.abc import Callable, Hashable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from doclock.core.constants import DEFAULT_STALE_AFTER_SECONDS
from doclock.locks.guard import ReleaseGuard
from doclock.locks.owner import is_process_running, parse_owner_token
from doclock.store.base import DocumentStore, Record


@dataclass
class SweepReport:
    """Outcome of one sweep pass."""

    inspected: int = 0
    released: list[Hashable] = field(default_factory=list)
    skipped: list[Hashable] = field(default_factory=list)
    failed: list[Hashable] = field(default_factory=list)


class OrphanSweeper:
    """Frees records whose lock holder is gone or has held them too long."""

    def __init__(
        self,
        store: DocumentStore,
        stale_after_seconds: float = DEFAULT_STALE_AFTER_SECONDS,
        *,
        guard: ReleaseGuard | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
        logger: logging.Logger | None = None,
    ):
        self.store = store
        self.stale_after_seconds = max(1.0, stale_after_seconds)
        self.logger = logger or logging.getLogger(__name__)
        self.guard = guard or ReleaseGuard(store, logger=self.logger)
        self._clock = clock

    def _owner_is_dead(self, owner_token: str) -> bool:
        identity = parse_owner_token(owner_token)
        if identity.pid is None or identity.host != socket.gethostname():
            return False
        return not is_process_running(identity.pid)

    def _lock_age_seconds(self, record: Record) -> float | None:
        locked_at = record.lock_timestamp
        if not isinstance(locked_at, datetime):
            return None
        if locked_at.tzinfo is None:
            locked_at = locked_at.replace(tzinfo=UTC)
        return (self._clock() - locked_at).total_seconds()

    def is_orphaned(self, record: Record) -> bool:
        if record.is_free or record.owner_token is None:
            return False
        if self._owner_is_dead(record.owner_token):
            return True
        age = self._lock_age_seconds(record)
        # A lock without a timestamp cannot age out; treat it as stale.
        return age is None or age > self.stale_after_seconds

    def sweep(self, keys: Iterable[Hashable] | None = None) -> SweepReport:
        """Release every orphaned lock among ``keys`` (all records when None)."""
        report = SweepReport()
        for record in self.store.find_locked(keys):
            report.inspected += 1
            if not self.is_orphaned(record):
                report.skipped.append(record.key)
                continue

            # Conditioned on the observed owner, so a fresh lock taken in between survives.
            if self.guard.unlock([record.key], record.owner_token):
                self.logger.warning(f"Released orphaned lock on record {record.key!r} held by {record.owner_token}")
                report.released.append(record.key)
            else:
                report.failed.append(record.key)

        self.logger.info(
            f"Orphan sweep: inspected={report.inspected} released={len(report.released)} "
            f"skipped={len(report.skipped)} failed={len(report.failed)}"
        )
        return report
