"""Core module - Foundation components with no internal dependencies.

This module provides the basic building blocks used throughout the package:
- Version information
- Custom exceptions
- Configuration dataclasses
- Constants and defaults
"""

from doclock.core.version import __version__

from doclock.core.exceptions import (
    DocLockError,
    ConfigurationError,
    StoreUnavailable,
    PartialMutationAnomaly,
    LockAcquisitionTimeout,
)

from doclock.core.config import (
    RetryConfig,
    StoreConfig,
    ReleaseConfig,
    LogConfig,
    ProtocolConfig,
    load_env_file,
)

from doclock.core.constants import (
    FREE_SENTINEL,
    UPDATE_MESSAGE_TEMPLATE,
    STORE_BACKEND_ENV,
    SUPPORTED_STORE_BACKENDS,
    DEFAULT_STALE_AFTER_SECONDS,
    DEFAULT_RETRY,
    DEFAULT_STORE,
    DEFAULT_RELEASE,
    DEFAULT_LOG,
    DEFAULT_RETRY_CONFIG,
)

__all__ = [
    # Version
    '__version__',
    # Exceptions
    'DocLockError',
    'ConfigurationError',
    'StoreUnavailable',
    'PartialMutationAnomaly',
    'LockAcquisitionTimeout',
    # Config dataclasses
    'RetryConfig',
    'StoreConfig',
    'ReleaseConfig',
    'LogConfig',
    'ProtocolConfig',
    'load_env_file',
    # Constants
    'FREE_SENTINEL',
    'UPDATE_MESSAGE_TEMPLATE',
    'STORE_BACKEND_ENV',
    'SUPPORTED_STORE_BACKENDS',
    'DEFAULT_STALE_AFTER_SECONDS',
    'DEFAULT_RETRY',
    'DEFAULT_STORE',
    'DEFAULT_RELEASE',
    'DEFAULT_LOG',
    'DEFAULT_RETRY_CONFIG',
]
