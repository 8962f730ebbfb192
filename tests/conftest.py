"""Pytest configuration and fixtures for doclock tests"""
import logging

import pytest

from doclock.core.config import ReleaseConfig, RetryConfig
from doclock.store.memory import MemoryDocumentStore


@pytest.fixture(autouse=True)
def _clean_doclock_env(monkeypatch):
    """Keep developer environment overrides out of the tests"""
    for name in (
        "DOCLOCK_STORE_BACKEND",
        "DOCLOCK_MONGO_URI",
        "DOCLOCK_DATABASE",
        "DOCLOCK_COLLECTION",
        "DOCLOCK_RETRY_BASE_DELAY",
        "DOCLOCK_RETRY_MAX_DELAY",
        "DOCLOCK_MAX_ATTEMPTS",
        "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def store():
    """In-memory store holding free records 1..5 with empty payloads"""
    memory_store = MemoryDocumentStore()
    memory_store.seed([1, 2, 3, 4, 5])
    return memory_store


@pytest.fixture
def fast_retry():
    """Retry settings that keep backoff waits in the millisecond range"""
    return RetryConfig(base_delay=0.001, max_delay=0.01, exponential_base=2, jitter=False)


@pytest.fixture
def fast_release():
    """Release settings without pauses between unlock attempts"""
    return ReleaseConfig(attempts=3, pause_seconds=0)


@pytest.fixture
def restore_root_logging():
    """Undo handler changes made by setup_logging"""
    handlers = logging.root.handlers[:]
    level = logging.root.level
    yield
    for handler in logging.root.handlers[:]:
        if handler not in handlers:
            handler.close()
            logging.root.removeHandler(handler)
    for handler in handlers:
        if handler not in logging.root.handlers:
            logging.root.addHandler(handler)
    logging.root.setLevel(level)
