"""Constants and default values for doclock.

This module centralizes the magic values used throughout the protocol
and its store adapters.
"""

from typing import Any

from doclock.core.config import LogConfig, ReleaseConfig, RetryConfig, StoreConfig

# ==================== RECORD LAYOUT ====================

# Owner value meaning "nobody holds this record"
FREE_SENTINEL: str = "unlocked"

# Default payload message written inside the critical section
UPDATE_MESSAGE_TEMPLATE: str = "Record {key} was updated by process:{owner}"

# ==================== ENVIRONMENT ====================

STORE_BACKEND_ENV: str = "DOCLOCK_STORE_BACKEND"
SUPPORTED_STORE_BACKENDS: tuple[str, ...] = ("memory", "mongo")

# ==================== ORPHAN SWEEP ====================

DEFAULT_STALE_AFTER_SECONDS: int = 3600  # Locks older than 1 hour are considered orphaned

# ==================== LOGGING DEFAULTS ====================

LOG_FILE_MAX_BYTES: int = 10 * 1024 * 1024  # 10MB max per log file
LOG_FILE_BACKUP_COUNT: int = 5  # Number of backup log files to keep

# ==================== CLI EXIT CODES ====================

EXIT_OK: int = 0
EXIT_ERROR: int = 1
EXIT_TIMEOUT: int = 2
EXIT_ANOMALY: int = 3

# ==================== DEFAULT CONFIG INSTANCES ====================

DEFAULT_RETRY = RetryConfig()
DEFAULT_STORE = StoreConfig()
DEFAULT_RELEASE = ReleaseConfig()
DEFAULT_LOG = LogConfig()

# Dict form for log lines and diagnostics
DEFAULT_RETRY_CONFIG: dict[str, Any] = DEFAULT_RETRY.to_dict()
