"""Retry scheduler driving the lock, mutate, release cycle.

The loop is an explicit state machine::

    ATTEMPTING -> LOCKED -> MUTATING -> UNLOCKED_SUCCESS        (terminal)
                                     -> UNLOCKED_PARTIAL_ANOMALY (raised)
    ATTEMPTING -> CONTENDED   -> RELEASED -> backoff -> ATTEMPTING
    ATTEMPTING -> STORE_ERROR -> RELEASED -> backoff -> ATTEMPTING
    any waiting state         -> CANCELLED                       (raised)

Every attempt releases whatever it claimed before the loop moves on.
Exclusivity comes from the store's conditional writes only; the scheduler
holds no in-process lock.
"""

from __future__ import annotations

import logging
import random
import threading
import time
from collections.abc import Callable, Hashable, Iterable

from doclock.core.config import ReleaseConfig, RetryConfig
from doclock.core.exceptions import LockAcquisitionTimeout, PartialMutationAnomaly, StoreUnavailable
from doclock.core.logging import with_log_context
from doclock.locks.coordinator import LockCoordinator
from doclock.locks.executor import ComputeUpdate, CriticalSectionExecutor, format_update_message
from doclock.locks.guard import ReleaseGuard
from doclock.locks.models import AttemptOutcome, AttemptState, LockAttempt, ProtocolResult, TargetSet
from doclock.locks.owner import make_owner_token
from doclock.store.base import DocumentStore

# Exponents beyond this already sit far above any sane max_delay
_MAX_BACKOFF_EXPONENT = 32


class BackoffPolicy:
    """Jittered exponential backoff bounded by ``max_delay``.

    Backoff Formula:
        delay = min(base_delay * (exponential_base ** failures), max_delay)
        if jitter: delay = min(delay * random.uniform(0.5, 1.5), max_delay)

    A fixed interval is ``exponential_base=1, jitter=False``.
    """

    def __init__(self, config: RetryConfig | None = None, rng: random.Random | None = None):
        self.config = config or RetryConfig()
        self._rng = rng or random.Random()

    def delay(self, failures: int) -> float:
        cfg = self.config
        exponent = min(max(0, failures), _MAX_BACKOFF_EXPONENT)
        delay = min(cfg.base_delay * (cfg.exponential_base**exponent), cfg.max_delay)
        if cfg.jitter:
            delay = min(delay * self._rng.uniform(0.5, 1.5), cfg.max_delay)
        return max(0.0, delay)


class CancellationToken:
    """External stop signal with an optional deadline.

    ``cancel()`` may be called from any thread; a scheduler waiting out a
    backoff interval wakes up immediately.
    """

    def __init__(self, timeout_seconds: float | None = None, *, clock: Callable[[], float] = time.monotonic):
        self._event = threading.Event()
        self._clock = clock
        self.deadline = None if timeout_seconds is None else clock() + timeout_seconds

    def cancel(self) -> None:
        self._event.set()

    @property
    def expired(self) -> bool:
        return self.deadline is not None and self._clock() >= self.deadline

    @property
    def cancelled(self) -> bool:
        return self._event.is_set() or self.expired

    @property
    def reason(self) -> str | None:
        if self._event.is_set():
            return "cancelled"
        if self.expired:
            return "deadline"
        return None

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - self._clock())

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True if the token fired meanwhile."""
        remaining = self.remaining()
        if remaining is not None and remaining <= seconds:
            self._event.wait(remaining)
            return True
        return self._event.wait(seconds)


def _stop_reason(cancel: CancellationToken, deadline: CancellationToken, fired: bool = False) -> str | None:
    """Why the loop must stop, or None to keep going."""
    for token in (cancel, deadline):
        if token.reason:
            return token.reason
    if fired:
        # Woke at its own deadline a hair before the clock agrees
        return "cancelled" if cancel.deadline is None else "deadline"
    return None


class RetryScheduler:
    """Repeats lock, mutate, release attempts until one succeeds.

    Contention and lock-phase store errors are retried after a backoff.
    A payload write failure, an error raised by ``compute_update`` or a
    ``PartialMutationAnomaly`` ends the run: the records are released
    first, then the error reaches the caller.
    """

    def __init__(
        self,
        store: DocumentStore,
        retry: RetryConfig | None = None,
        release: ReleaseConfig | None = None,
        *,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        rng: random.Random | None = None,
    ):
        self.store = store
        self.retry = retry or RetryConfig()
        self.release = release or ReleaseConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.backoff = BackoffPolicy(self.retry, rng)
        self.state = AttemptState.ATTEMPTING
        self.transitions: list[AttemptState] = []

    def _transition(self, state: AttemptState) -> None:
        self.state = state
        self.transitions.append(state)

    def run(
        self,
        target_set: TargetSet | Iterable[Hashable],
        owner_token: str | None = None,
        compute_update: ComputeUpdate = format_update_message,
        cancel: CancellationToken | None = None,
    ) -> ProtocolResult:
        """Lock, mutate and release ``target_set``, retrying until success.

        Raises:
            LockAcquisitionTimeout: cancelled, past the deadline or out of attempts
            PartialMutationAnomaly: the payload write missed locked records
            StoreUnavailable: the payload write failed
        """
        targets = TargetSet.coerce(target_set)
        owner = make_owner_token() if owner_token is None else owner_token
        # The configured deadline applies even when the caller brings its own token.
        deadline = CancellationToken(self.retry.timeout_seconds)
        cancel = cancel or deadline
        log = with_log_context(self.logger, owner_token=owner)

        coordinator = LockCoordinator(self.store, log)
        coordinator.validate_owner(owner)
        executor = CriticalSectionExecutor(self.store, log)
        guard = ReleaseGuard(self.store, self.release, log)

        self.transitions = []
        started = time.monotonic()
        outcomes: list[AttemptOutcome] = []
        number = 0

        while True:
            reason = _stop_reason(cancel, deadline)
            if reason:
                self._abort(number, started, reason, log)

            number += 1
            attempt = LockAttempt(owner_token=owner, target_set=targets, number=number)
            self._run_attempt(attempt, coordinator, executor, guard, compute_update, log)
            outcomes.append(attempt.outcome)

            if attempt.outcome is AttemptOutcome.SUCCESS:
                elapsed = time.monotonic() - started
                log.info(f"Updated {len(targets)} record(s) on attempt {number} in {elapsed:.2f}s")
                return ProtocolResult(
                    owner_token=owner,
                    target_set=targets,
                    attempts=number,
                    updated_count=attempt.updated_count or 0,
                    elapsed_seconds=elapsed,
                    outcomes=outcomes,
                )

            if self.retry.max_attempts is not None and number >= self.retry.max_attempts:
                self._abort(number, started, "max_attempts", log)

            delay = self.backoff.delay(number - 1)
            log.warning(
                f"Attempt {number} {attempt.outcome.value} "
                f"(claimed {attempt.claimed_count}/{len(targets)}). Retrying in {delay:.2f}s...",
                extra={"attempt": number},
            )
            remaining = deadline.remaining()
            fired = cancel.wait(delay if remaining is None else min(delay, remaining))
            reason = _stop_reason(cancel, deadline, fired)
            if reason:
                self._abort(number, started, reason, log)

    def _run_attempt(
        self,
        attempt: LockAttempt,
        coordinator: LockCoordinator,
        executor: CriticalSectionExecutor,
        guard: ReleaseGuard,
        compute_update: ComputeUpdate,
        log: logging.Logger | logging.LoggerAdapter,
    ) -> None:
        targets, owner = attempt.target_set, attempt.owner_token
        self._transition(AttemptState.ATTEMPTING)

        try:
            with guard.holding(targets, owner):
                try:
                    attempt.claimed_count = coordinator.try_lock(targets, owner)
                except StoreUnavailable as e:
                    attempt.outcome = AttemptOutcome.STORE_ERROR
                    attempt.error = e
                    self._transition(AttemptState.STORE_ERROR)
                else:
                    if not attempt.fully_claimed:
                        attempt.outcome = AttemptOutcome.CONTENDED
                        self._transition(AttemptState.CONTENDED)
                    else:
                        self._transition(AttemptState.LOCKED)
                        self._transition(AttemptState.MUTATING)
                        attempt.updated_count = executor.apply_payload(targets, owner, compute_update)
                        attempt.outcome = AttemptOutcome.SUCCESS
        except PartialMutationAnomaly as e:
            attempt.outcome = AttemptOutcome.PARTIAL_ANOMALY
            attempt.error = e
            self._transition(AttemptState.UNLOCKED_PARTIAL_ANOMALY)
            raise
        except Exception as e:
            attempt.outcome = AttemptOutcome.MUTATION_ERROR
            attempt.error = e
            self._transition(AttemptState.RELEASED)
            released = "records released" if guard.last_unlock_ok else "release failed, records may be orphaned"
            log.error(f"Critical section failed on attempt {attempt.number}; {released}: {e}")
            raise

        if attempt.outcome is AttemptOutcome.SUCCESS:
            self._transition(AttemptState.UNLOCKED_SUCCESS)
        else:
            self._transition(AttemptState.RELEASED)

    def _abort(
        self,
        attempts: int,
        started: float,
        reason: str,
        log: logging.Logger | logging.LoggerAdapter,
    ) -> None:
        self._transition(AttemptState.CANCELLED)
        error = LockAcquisitionTimeout(attempts=attempts, elapsed_seconds=time.monotonic() - started, reason=reason)
        log.error(str(error))
        raise error


def run_locked_update(
    store: DocumentStore,
    keys: TargetSet | Iterable[Hashable],
    *,
    owner_token: str | None = None,
    compute_update: ComputeUpdate = format_update_message,
    retry: RetryConfig | None = None,
    release: ReleaseConfig | None = None,
    cancel: CancellationToken | None = None,
    logger: logging.Logger | None = None,
) -> ProtocolResult:
    """Function-based entry point for a single locked update run.

    Example:
        store = create_store(StoreConfig(backend="mongo"))
        result = run_locked_update(store, [1, 3, 5], retry=RetryConfig(timeout_seconds=30))
    """
    scheduler = RetryScheduler(store, retry, release, logger=logger)
    return scheduler.run(keys, owner_token=owner_token, compute_update=compute_update, cancel=cancel)
