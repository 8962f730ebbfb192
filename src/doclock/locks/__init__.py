"""Record locking protocol over a shared document store.

This package implements lock, mutate and release for a target set of
records behind small components so callers can use the whole retry loop
or any single step.
"""

from doclock.locks.coordinator import LockCoordinator
from doclock.locks.executor import CriticalSectionExecutor, format_update_message
from doclock.locks.guard import ReleaseGuard
from doclock.locks.models import AttemptOutcome, AttemptState, LockAttempt, ProtocolResult, TargetSet
from doclock.locks.orphans import OrphanSweeper, SweepReport
from doclock.locks.owner import make_owner_token, parse_owner_token
from doclock.locks.scheduler import BackoffPolicy, CancellationToken, RetryScheduler, run_locked_update

__all__ = [
    "AttemptOutcome",
    "AttemptState",
    "BackoffPolicy",
    "CancellationToken",
    "CriticalSectionExecutor",
    "LockAttempt",
    "LockCoordinator",
    "OrphanSweeper",
    "ProtocolResult",
    "ReleaseGuard",
    "RetryScheduler",
    "SweepReport",
    "TargetSet",
    "format_update_message",
    "make_owner_token",
    "parse_owner_token",
    "run_locked_update",
]
