"""Configuration dataclasses for doclock.

These dataclasses centralize all configuration options for type safety
and easy testing. They can be created from command-line arguments,
environment variables, or used directly in code.
"""

from __future__ import annotations

import argparse
import logging
import math
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from dotenv import find_dotenv, load_dotenv


@dataclass
class RetryConfig:
    """Configuration for the lock retry loop.

    Attributes:
        base_delay: Initial backoff delay in seconds (default: 0.5)
        max_delay: Maximum delay cap in seconds (default: 5.0)
        exponential_base: Multiplier for exponential backoff (default: 2)
        jitter: Add randomization to delays (default: True)
        max_attempts: Stop after this many lock attempts (default: None = unbounded)
        timeout_seconds: Stop after this much wall time (default: None = unbounded)
    """

    base_delay: float = 0.5
    max_delay: float = 5.0
    exponential_base: int = 2
    jitter: bool = True
    max_attempts: int | None = None
    timeout_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "base_delay": self.base_delay,
            "max_delay": self.max_delay,
            "exponential_base": self.exponential_base,
            "jitter": self.jitter,
            "max_attempts": self.max_attempts,
            "timeout_seconds": self.timeout_seconds,
        }


@dataclass
class StoreConfig:
    """Configuration for the document store and record layout.

    Attributes:
        backend: Store backend name, "memory" or "mongo" (default: "memory")
        uri: MongoDB connection string
        database: Database name
        collection: Collection holding the lockable records
        key_field: Field holding the record key (default: "_id")
        owner_field: Field holding the owner token or free sentinel
        timestamp_field: Field holding the lock acquisition time
        payload_field: Field mutated inside the critical section
        free_sentinel: Owner value meaning the record is free
        server_selection_timeout_ms: Driver server selection timeout
    """

    backend: str = "memory"
    uri: str = "mongodb://localhost:27017/"
    database: str = "Indeed"
    collection: str = "UpdateExamples"
    key_field: str = "_id"
    owner_field: str = "lockStatus"
    timestamp_field: str = "lockTS"
    payload_field: str = "dataPayload"
    free_sentinel: str = "unlocked"
    server_selection_timeout_ms: int = 5000


@dataclass
class ReleaseConfig:
    """Configuration for the release guard.

    Attributes:
        attempts: Unlock write attempts before the keys are reported orphaned (default: 3)
        pause_seconds: Fixed pause between unlock attempts (default: 0.1)
    """

    attempts: int = 3
    pause_seconds: float = 0.1


@dataclass
class LogConfig:
    """Configuration for logging behavior.

    Attributes:
        level: Logging level string (default: "INFO")
        format: "text" or "json" (default: "text")
        file_max_bytes: Maximum size per log file (default: 10MB)
        file_backup_count: Number of backup log files (default: 5)
    """

    level: str = "INFO"
    format: str = "text"
    file_max_bytes: int = 10 * 1024 * 1024  # 10MB
    file_backup_count: int = 5


def load_env_file(path: str | Path | None = None, logger: logging.Logger | None = None) -> bool:
    """Load ``DOCLOCK_*`` settings from a .env file without overriding the real environment.

    With no ``path`` the file is searched upwards from the working directory.
    Returns True when a file was found and read.
    """
    logger = logger or logging.getLogger(__name__)
    if path is not None and not Path(path).is_file():
        logger.warning(f"Env file not found: {path}")
        return False

    env_path = str(path) if path is not None else find_dotenv(usecwd=True)
    if not env_path:
        logger.debug(".env file not found")
        return False

    loaded = load_dotenv(dotenv_path=env_path, override=False)
    logger.debug(f".env file loaded from {env_path}")
    return loaded


def _parse_env_numeric(value: str | None, cast: Callable[[str], Any]) -> Any | None:
    """Parse an environment value, returning None when invalid."""
    if value is None:
        return None
    try:
        parsed = cast(value)
    except (TypeError, ValueError):
        return None
    if isinstance(parsed, float) and not math.isfinite(parsed):
        return None
    return parsed


@dataclass
class ProtocolConfig:
    """Master configuration for a locked update run.

    Attributes:
        retry: Retry loop configuration
        store: Document store configuration
        release: Release guard configuration
        log: Logging configuration
    """

    retry: RetryConfig = field(default_factory=RetryConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    release: ReleaseConfig = field(default_factory=ReleaseConfig)
    log: LogConfig = field(default_factory=LogConfig)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ProtocolConfig:
        """Create configuration from defaults overlaid with environment variables.

        Invalid numeric values are ignored with a warning so a typo in the
        environment never prevents a run.
        """
        env = os.environ if environ is None else environ
        logger = logging.getLogger(__name__)
        config = cls()

        store_overrides = {
            "backend": env.get("DOCLOCK_STORE_BACKEND"),
            "uri": env.get("DOCLOCK_MONGO_URI"),
            "database": env.get("DOCLOCK_DATABASE"),
            "collection": env.get("DOCLOCK_COLLECTION"),
        }
        config.store = replace(config.store, **{k: v for k, v in store_overrides.items() if v})

        retry_overrides: dict[str, Any] = {}
        for env_name, attr, cast in (
            ("DOCLOCK_RETRY_BASE_DELAY", "base_delay", float),
            ("DOCLOCK_RETRY_MAX_DELAY", "max_delay", float),
            ("DOCLOCK_MAX_ATTEMPTS", "max_attempts", int),
        ):
            if env_name not in env:
                continue
            parsed = _parse_env_numeric(env.get(env_name), cast)
            if parsed is None or parsed < 0:
                logger.warning(
                    f"Ignoring invalid {env_name}={env.get(env_name)!r}; "
                    f"using default {getattr(config.retry, attr)}"
                )
                continue
            retry_overrides[attr] = parsed
        config.retry = replace(config.retry, **retry_overrides)

        if env.get("LOG_LEVEL"):
            config.log = replace(config.log, level=env["LOG_LEVEL"].upper())

        config.retry = _clamp_delay_window(config.retry, logger)
        return config

    @classmethod
    def from_args(cls, args: argparse.Namespace, base: ProtocolConfig | None = None) -> ProtocolConfig:
        """Overlay parsed command-line arguments on ``base`` (or defaults)."""
        config = base or cls()

        def _arg(name: str, default: Any) -> Any:
            value = getattr(args, name, None)
            return default if value is None else value

        retry = RetryConfig(
            base_delay=_arg("base_delay", config.retry.base_delay),
            max_delay=_arg("max_delay", config.retry.max_delay),
            exponential_base=config.retry.exponential_base,
            jitter=not getattr(args, "no_jitter", False) and config.retry.jitter,
            max_attempts=_arg("max_attempts", config.retry.max_attempts),
            timeout_seconds=_arg("timeout", config.retry.timeout_seconds),
        )
        store = replace(
            config.store,
            backend=_arg("backend", config.store.backend),
            uri=_arg("uri", config.store.uri),
            database=_arg("database", config.store.database),
            collection=_arg("collection", config.store.collection),
        )
        log = replace(
            config.log,
            level=_arg("log_level", config.log.level),
            format=_arg("log_format", config.log.format),
        )
        return cls(
            retry=_clamp_delay_window(retry, logging.getLogger(__name__)),
            store=store,
            release=config.release,
            log=log,
        )


def _clamp_delay_window(retry: RetryConfig, logger: logging.Logger) -> RetryConfig:
    # Guard against invalid windows that can otherwise cause negative sleep.
    if retry.max_delay < retry.base_delay:
        logger.warning(
            f"Ignoring invalid retry delay window (max_delay={retry.max_delay} < base_delay={retry.base_delay}); "
            f"using max_delay={retry.base_delay}"
        )
        return replace(retry, max_delay=retry.base_delay)
    return retry
