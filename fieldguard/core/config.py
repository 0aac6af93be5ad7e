"""
Instant-edit core configuration.
Every knob is read from the environment once at import; accessors re-read where
tests need to flip values at runtime.
"""

import os
from pathlib import Path

# Remote record store (SQLite reference implementation)
DB_PATH = os.getenv("DB_PATH", "./data/records.db")

# Local draft/queue storage file
LOCAL_STORAGE_PATH = os.getenv("LOCAL_STORAGE_PATH", "./data/local_storage.db")

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Local storage key layout: {prefix}:{version}:{category}:{identifier}
STORAGE_PREFIX = os.getenv("STORAGE_PREFIX", "correction-ui")
STORAGE_VERSION = os.getenv("STORAGE_VERSION", "v1")
STORAGE_CATEGORIES = ("draft", "pending", "session", "prefs")

# Undo window (seconds)
UNDO_WINDOW_SEC = int(os.getenv("UNDO_WINDOW_SEC", "30"))

# Storage TTLs (seconds)
DRAFT_MAX_AGE_SEC = int(os.getenv("DRAFT_MAX_AGE_SEC", str(7 * 24 * 60 * 60)))
PENDING_QUEUE_TTL_SEC = int(os.getenv("PENDING_QUEUE_TTL_SEC", str(7 * 24 * 60 * 60)))
SESSION_MAX_AGE_SEC = int(os.getenv("SESSION_MAX_AGE_SEC", str(60 * 60)))

# Offline queue limits
PENDING_MAX_ATTEMPTS = int(os.getenv("PENDING_MAX_ATTEMPTS", "3"))
MAX_PENDING_QUEUE_SIZE = int(os.getenv("MAX_PENDING_QUEUE_SIZE", "50"))

# How many times an auto-merged save is re-issued before giving up
MAX_MERGE_RETRIES = int(os.getenv("MAX_MERGE_RETRIES", "3"))

# Run storage cleanup when the API starts
CLEANUP_ON_STARTUP = os.getenv("CLEANUP_ON_STARTUP", "true").lower() == "true"

VERSION = "1.0.0"


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def ensure_db_directory(path: str = None):
    """Ensure the directory holding a database file exists."""
    Path(path or DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def get_undo_window():
    """Get the undo window in seconds."""
    return UNDO_WINDOW_SEC


def get_storage_namespace():
    """Get the (prefix, version) pair used for local storage keys."""
    return STORAGE_PREFIX, STORAGE_VERSION


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if UNDO_WINDOW_SEC < 1:
        issues.append("UNDO_WINDOW_SEC must be >= 1")

    if DRAFT_MAX_AGE_SEC < 1:
        issues.append("DRAFT_MAX_AGE_SEC must be >= 1")

    if SESSION_MAX_AGE_SEC < 1:
        issues.append("SESSION_MAX_AGE_SEC must be >= 1")

    if PENDING_MAX_ATTEMPTS < 1:
        issues.append("PENDING_MAX_ATTEMPTS must be >= 1")

    if MAX_PENDING_QUEUE_SIZE < 1:
        issues.append("MAX_PENDING_QUEUE_SIZE must be >= 1")

    if ":" in STORAGE_PREFIX or ":" in STORAGE_VERSION:
        issues.append("STORAGE_PREFIX and STORAGE_VERSION must not contain ':'")

    return issues
