"""Value objects for the lock, mutate, release protocol."""

from __future__ import annotations

from collections.abc import Hashable, Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from doclock.core.exceptions import ConfigurationError


class TargetSet:
    """Ordered, de-duplicated, non-empty collection of record keys.

    A target set is locked, mutated and released as one unit.
    """

    __slots__ = ("_keys",)

    def __init__(self, keys: Iterable[Hashable]):
        unique = tuple(dict.fromkeys(keys))
        if not unique:
            raise ConfigurationError("Target set must contain at least one record key", field="keys")
        self._keys = unique

    @property
    def keys(self) -> tuple[Hashable, ...]:
        return self._keys

    def __iter__(self) -> Iterator[Hashable]:
        return iter(self._keys)

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __eq__(self, other: object) -> bool:
        if isinstance(other, TargetSet):
            return self._keys == other._keys
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._keys)

    def __repr__(self) -> str:
        return f"TargetSet({list(self._keys)!r})"

    @classmethod
    def coerce(cls, keys: TargetSet | Iterable[Hashable]) -> TargetSet:
        return keys if isinstance(keys, TargetSet) else cls(keys)


class AttemptOutcome(Enum):
    """How a single lock attempt concluded."""

    SUCCESS = "success"  # All records locked, mutated and released
    CONTENDED = "contended"  # Another owner held at least one record
    STORE_ERROR = "store_error"  # The lock write itself failed
    MUTATION_ERROR = "mutation_error"  # Payload write or payload computation failed
    PARTIAL_ANOMALY = "partial_anomaly"  # Fewer records updated than locked


class AttemptState(Enum):
    """States of the retry loop."""

    ATTEMPTING = "attempting"
    LOCKED = "locked"
    CONTENDED = "contended"
    STORE_ERROR = "store_error"
    MUTATING = "mutating"
    UNLOCKED_SUCCESS = "unlocked_success"
    UNLOCKED_PARTIAL_ANOMALY = "unlocked_partial_anomaly"
    RELEASED = "released"
    CANCELLED = "cancelled"


@dataclass
class LockAttempt:
    """One iteration of the retry loop; discarded once released."""

    owner_token: str
    target_set: TargetSet
    number: int = 1
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    outcome: AttemptOutcome | None = None
    claimed_count: int = 0
    updated_count: int | None = None
    error: Exception | None = None

    @property
    def fully_claimed(self) -> bool:
        return self.claimed_count == len(self.target_set)


@dataclass
class ProtocolResult:
    """Summary of a successful protocol run."""

    owner_token: str
    target_set: TargetSet
    attempts: int
    updated_count: int
    elapsed_seconds: float
    outcomes: list[AttemptOutcome] = field(default_factory=list)

    @property
    def contended_attempts(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome is AttemptOutcome.CONTENDED)

    def to_dict(self) -> dict[str, object]:
        return {
            "owner_token": self.owner_token,
            "keys": list(self.target_set.keys),
            "attempts": self.attempts,
            "updated_count": self.updated_count,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "outcomes": [outcome.value for outcome in self.outcomes],
        }
