"""Tests for the retry scheduler, backoff policy and cancellation token."""

from __future__ import annotations

import logging
import random
import threading
from unittest.mock import patch

import pytest

from doclock.core.config import ReleaseConfig, RetryConfig
from doclock.core.exceptions import (
    ConfigurationError,
    LockAcquisitionTimeout,
    PartialMutationAnomaly,
    StoreUnavailable,
)
from doclock.locks.guard import ReleaseGuard
from doclock.locks.models import AttemptOutcome, AttemptState
from doclock.locks.scheduler import BackoffPolicy, CancellationToken, RetryScheduler, run_locked_update
from doclock.store.base import RecordFilter, RecordUpdate


def _hold(store, key, owner):
    store.conditional_update_many(
        RecordFilter.for_keys([key], "unlocked"),
        RecordUpdate(set_fields={"lockStatus": owner}, now_fields=("lockTS",)),
    )


def _assert_free(store, keys):
    for key in keys:
        record = store.get(key)
        assert record.is_free, f"record {key} still held by {record.owner_token}"
        assert record.lock_timestamp is None


# ==================== BackoffPolicy ====================


class TestBackoffPolicy:
    def test_exponential_growth_capped_at_max_delay(self):
        policy = BackoffPolicy(RetryConfig(base_delay=0.5, max_delay=5.0, exponential_base=2, jitter=False))
        assert [policy.delay(n) for n in range(6)] == [0.5, 1.0, 2.0, 4.0, 5.0, 5.0]

    def test_fixed_interval(self):
        policy = BackoffPolicy(RetryConfig(base_delay=0.5, max_delay=5.0, exponential_base=1, jitter=False))
        assert {policy.delay(n) for n in range(10)} == {0.5}

    def test_jitter_stays_within_bounds(self):
        policy = BackoffPolicy(
            RetryConfig(base_delay=1.0, max_delay=1.2, exponential_base=2, jitter=True), rng=random.Random(7)
        )
        for _ in range(200):
            delay = policy.delay(0)
            assert 0.5 <= delay <= 1.2

    def test_large_failure_count_does_not_overflow(self):
        policy = BackoffPolicy(RetryConfig(base_delay=0.5, max_delay=5.0, jitter=False))
        assert policy.delay(100_000) == 5.0


# ==================== CancellationToken ====================


class TestCancellationToken:
    def test_no_deadline_by_default(self):
        token = CancellationToken()
        assert not token.cancelled
        assert token.reason is None
        assert token.remaining() is None

    def test_cancel_sets_reason(self):
        token = CancellationToken()
        token.cancel()
        assert token.cancelled
        assert token.reason == "cancelled"

    def test_deadline_expiry(self):
        now = [100.0]
        token = CancellationToken(5.0, clock=lambda: now[0])
        assert token.remaining() == 5.0
        assert not token.expired

        now[0] = 105.0
        assert token.expired
        assert token.reason == "deadline"
        assert token.remaining() == 0.0

    def test_wait_returns_early_when_cancelled(self):
        token = CancellationToken()
        threading.Timer(0.05, token.cancel).start()
        assert token.wait(10.0) is True

    def test_wait_without_signal_returns_false(self):
        assert CancellationToken().wait(0.01) is False


# ==================== RetryScheduler ====================


class TestSuccessfulRun:
    def test_locks_updates_and_releases_target_set(self, store, fast_retry):
        result = run_locked_update(store, [1, 3, 5], owner_token="P", retry=fast_retry)

        assert result.attempts == 1
        assert result.updated_count == 3
        assert result.outcomes == [AttemptOutcome.SUCCESS]
        for key in (1, 3, 5):
            assert store.get(key).payload == f"Record {key} was updated by process:P"
        _assert_free(store, [1, 2, 3, 4, 5])
        assert store.get(2).payload == ""

    def test_state_transitions_for_clean_run(self, store, fast_retry):
        scheduler = RetryScheduler(store, fast_retry)
        scheduler.run([1, 3, 5], owner_token="P")

        assert scheduler.transitions == [
            AttemptState.ATTEMPTING,
            AttemptState.LOCKED,
            AttemptState.MUTATING,
            AttemptState.UNLOCKED_SUCCESS,
        ]
        assert scheduler.state is AttemptState.UNLOCKED_SUCCESS

    def test_generates_owner_token_when_none_given(self, store, fast_retry):
        result = run_locked_update(store, [2], retry=fast_retry)
        assert result.owner_token.count(":") >= 2
        assert store.get(2).payload.endswith(result.owner_token)

    def test_rerun_with_same_owner_is_idempotent(self, store, fast_retry):
        run_locked_update(store, [1, 3, 5], owner_token="P", retry=fast_retry)
        snapshot = {key: store.get(key).payload for key in (1, 3, 5)}

        result = run_locked_update(store, [1, 3, 5], owner_token="P", retry=fast_retry)

        assert result.updated_count == 3
        assert {key: store.get(key).payload for key in (1, 3, 5)} == snapshot
        _assert_free(store, [1, 3, 5])

    def test_result_serializes_to_dict(self, store, fast_retry):
        result = run_locked_update(store, [5, 1], owner_token="P", retry=fast_retry)
        data = result.to_dict()
        assert data["owner_token"] == "P"
        assert data["keys"] == [5, 1]
        assert data["outcomes"] == ["success"]

    def test_rejects_free_sentinel_as_owner(self, store, fast_retry):
        with pytest.raises(ConfigurationError):
            run_locked_update(store, [1], owner_token="unlocked", retry=fast_retry)
        assert store.write_calls == 0

    def test_rejects_empty_owner_token(self, store, fast_retry):
        with pytest.raises(ConfigurationError):
            run_locked_update(store, [1], owner_token="", retry=fast_retry)
        assert store.write_calls == 0


class TestContention:
    def test_partial_claim_is_released_without_mutation(self, store):
        _hold(store, 3, "Q")
        retry = RetryConfig(base_delay=0.001, max_delay=0.01, jitter=False, max_attempts=1)

        with patch.object(store, "batch_conditional_update", wraps=store.batch_conditional_update) as batch:
            with pytest.raises(LockAcquisitionTimeout) as exc_info:
                run_locked_update(store, [1, 3, 5], owner_token="P", retry=retry)

        assert exc_info.value.reason == "max_attempts"
        assert exc_info.value.attempts == 1
        batch.assert_not_called()
        _assert_free(store, [1, 5])
        assert store.get(3).owner_token == "Q"
        assert all(store.get(key).payload == "" for key in (1, 3, 5))

    def test_retries_until_competitor_releases(self, store, fast_retry):
        _hold(store, 3, "Q")
        threading.Timer(0.05, ReleaseGuard(store).unlock, args=([3], "Q")).start()
        scheduler = RetryScheduler(store, fast_retry)

        with patch.object(store, "batch_conditional_update", wraps=store.batch_conditional_update) as batch:
            result = scheduler.run([1, 3, 5], owner_token="P", cancel=CancellationToken(10.0))

        assert result.attempts >= 2
        assert result.contended_attempts == result.attempts - 1
        assert result.outcomes[-1] is AttemptOutcome.SUCCESS
        assert batch.call_count == 1
        assert store.get(3).payload == "Record 3 was updated by process:P"
        _assert_free(store, [1, 3, 5])
        assert scheduler.transitions[:3] == [
            AttemptState.ATTEMPTING,
            AttemptState.CONTENDED,
            AttemptState.RELEASED,
        ]

    def test_contention_logs_retry_warning(self, store, caplog):
        _hold(store, 3, "Q")
        retry = RetryConfig(base_delay=0.001, max_delay=0.01, jitter=False, max_attempts=2)

        with caplog.at_level(logging.WARNING):
            with pytest.raises(LockAcquisitionTimeout):
                run_locked_update(store, [1, 3], owner_token="P", retry=retry)

        assert "Attempt 1 contended (claimed 1/2)" in caplog.text


class TestCancellation:
    def test_deadline_stops_endless_contention(self, store):
        _hold(store, 1, "Q")
        retry = RetryConfig(base_delay=0.01, max_delay=0.02, jitter=False, timeout_seconds=0.1)

        with pytest.raises(LockAcquisitionTimeout) as exc_info:
            run_locked_update(store, [1, 2], owner_token="P", retry=retry)

        assert exc_info.value.reason == "deadline"
        assert exc_info.value.attempts >= 1
        _assert_free(store, [2])
        assert store.get(1).owner_token == "Q"

    def test_cancel_from_another_thread(self, store):
        _hold(store, 1, "Q")
        token = CancellationToken()
        threading.Timer(0.05, token.cancel).start()
        scheduler = RetryScheduler(store, RetryConfig(base_delay=0.01, max_delay=0.02, jitter=False))

        with pytest.raises(LockAcquisitionTimeout) as exc_info:
            scheduler.run([1, 2], owner_token="P", cancel=token)

        assert exc_info.value.reason == "cancelled"
        assert scheduler.state is AttemptState.CANCELLED
        _assert_free(store, [2])

    def test_configured_deadline_applies_alongside_caller_token(self, store):
        _hold(store, 1, "Q")
        retry = RetryConfig(base_delay=0.01, max_delay=0.02, jitter=False, timeout_seconds=0.2)
        token = CancellationToken()
        # Stops a broken deadline from hanging the suite
        safety = threading.Timer(5.0, token.cancel)
        safety.start()

        try:
            with pytest.raises(LockAcquisitionTimeout) as exc_info:
                run_locked_update(store, [1, 2], owner_token="P", retry=retry, cancel=token)
        finally:
            safety.cancel()

        assert exc_info.value.reason == "deadline"
        assert exc_info.value.elapsed_seconds < 2.0
        assert not token.cancelled
        _assert_free(store, [2])

    def test_earlier_caller_deadline_wins_over_configured_one(self, store):
        _hold(store, 1, "Q")
        retry = RetryConfig(base_delay=0.01, max_delay=0.02, jitter=False, timeout_seconds=30.0)

        with pytest.raises(LockAcquisitionTimeout) as exc_info:
            run_locked_update(store, [1, 2], owner_token="P", retry=retry, cancel=CancellationToken(0.1))

        assert exc_info.value.reason == "deadline"
        assert exc_info.value.elapsed_seconds < 2.0

    def test_pre_cancelled_token_makes_no_writes(self, store, fast_retry):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(LockAcquisitionTimeout) as exc_info:
            run_locked_update(store, [1], owner_token="P", retry=fast_retry, cancel=token)

        assert exc_info.value.attempts == 0
        assert store.write_calls == 0


class TestFailures:
    def test_payload_write_failure_releases_and_surfaces(self, store, fast_retry, fast_release):
        with patch.object(
            store, "batch_conditional_update", side_effect=StoreUnavailable("write lost", operation="bulk_write")
        ):
            with pytest.raises(StoreUnavailable):
                run_locked_update(store, [1, 3, 5], owner_token="P", retry=fast_retry, release=fast_release)

        _assert_free(store, [1, 3, 5])
        assert all(store.get(key).payload == "" for key in (1, 3, 5))

        result = run_locked_update(store, [1, 3, 5], owner_token="P", retry=fast_retry)
        assert result.updated_count == 3

    def test_compute_update_error_releases_records(self, store, fast_retry, caplog):
        scheduler = RetryScheduler(store, fast_retry)

        def broken(key, owner):
            raise ValueError("bad payload")

        with caplog.at_level(logging.ERROR):
            with pytest.raises(ValueError, match="bad payload"):
                scheduler.run([1, 3], owner_token="P", compute_update=broken)

        assert scheduler.state is AttemptState.RELEASED
        _assert_free(store, [1, 3])
        assert "records released: bad payload" in caplog.text

    def test_partial_mutation_is_raised_after_release(self, store, fast_retry):
        scheduler = RetryScheduler(store, fast_retry)

        with patch.object(store, "batch_conditional_update", return_value=2):
            with pytest.raises(PartialMutationAnomaly) as exc_info:
                scheduler.run([1, 3, 5], owner_token="P")

        assert exc_info.value.expected == 3
        assert exc_info.value.actual == 2
        assert scheduler.state is AttemptState.UNLOCKED_PARTIAL_ANOMALY
        _assert_free(store, [1, 3, 5])

    def test_lock_phase_store_error_is_retried(self, store, fast_retry):
        original = store.conditional_update_many
        failures = [StoreUnavailable("primary stepped down", operation="update_many")]

        def flaky_lock(record_filter, update):
            if record_filter.owner == "unlocked" and failures:
                raise failures.pop()
            return original(record_filter, update)

        scheduler = RetryScheduler(store, fast_retry)
        with patch.object(store, "conditional_update_many", side_effect=flaky_lock):
            result = scheduler.run([1, 3, 5], owner_token="P")

        assert result.outcomes == [AttemptOutcome.STORE_ERROR, AttemptOutcome.SUCCESS]
        assert scheduler.transitions == [
            AttemptState.ATTEMPTING,
            AttemptState.STORE_ERROR,
            AttemptState.RELEASED,
            AttemptState.ATTEMPTING,
            AttemptState.LOCKED,
            AttemptState.MUTATING,
            AttemptState.UNLOCKED_SUCCESS,
        ]

    def test_release_failure_does_not_mask_critical_section_error(self, store, fast_retry, caplog):
        original = store.conditional_update_many

        def unlock_fails(record_filter, update):
            if record_filter.owner == "P":
                raise StoreUnavailable("connection reset", operation="update_many")
            return original(record_filter, update)

        def broken(key, owner):
            raise ValueError("bad payload")

        release = ReleaseConfig(attempts=2, pause_seconds=0)
        with caplog.at_level(logging.ERROR):
            with patch.object(store, "conditional_update_many", side_effect=unlock_fails):
                with pytest.raises(ValueError, match="bad payload"):
                    run_locked_update(
                        store, [1, 3], owner_token="P", compute_update=broken, retry=fast_retry, release=release
                    )

        # Orphaned until swept
        assert store.get(1).owner_token == "P"
        assert "may stay locked by P" in caplog.text
        assert "release failed, records may be orphaned: bad payload" in caplog.text
        assert "records released" not in caplog.text
