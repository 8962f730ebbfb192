"""
doclock - cooperative record locking over a shared document store

Serializes updates to a set of records by claiming them with conditional
writes, mutating them while owned, and always releasing them afterwards.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from doclock.core.lazy import make_getattr
from doclock.core.version import __version__

_EXPORTS = {
    "CancellationToken": "doclock.locks.scheduler",
    "RetryScheduler": "doclock.locks.scheduler",
    "run_locked_update": "doclock.locks.scheduler",
    "TargetSet": "doclock.locks.models",
    "ProtocolResult": "doclock.locks.models",
    "ProtocolConfig": "doclock.core.config",
    "create_store": "doclock.store",
    "main": "doclock.cli",
}

__all__ = ["__version__", *_EXPORTS]

if TYPE_CHECKING:
    from doclock.cli import main
    from doclock.core.config import ProtocolConfig
    from doclock.locks.models import ProtocolResult, TargetSet
    from doclock.locks.scheduler import CancellationToken, RetryScheduler, run_locked_update
    from doclock.store import create_store

__getattr__ = make_getattr(__name__, _EXPORTS, mapping=_EXPORTS)
