"""
SQLite foundation for the reference record store and the local key/value store.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator, Optional

from . import config


@contextmanager
def get_db(db_path: Optional[str] = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    path = db_path or config.DB_PATH
    conn = sqlite3.connect(path)
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: Optional[str] = None):
    """Initialize the record store with required tables."""
    path = db_path or config.DB_PATH
    config.ensure_db_directory(path)

    with get_db(path) as conn:
        cursor = conn.cursor()

        # Records under optimistic version control
        cursor.execute('''
            CREATE TABLE IF NOT EXISTS records (
                id TEXT PRIMARY KEY,
                category TEXT NOT NULL,
                urgency TEXT NOT NULL,
                action TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_by TEXT
            )
        ''')

        conn.commit()


def init_local_storage(storage_path: Optional[str] = None):
    """Initialize the local key/value table backing drafts and the pending queue."""
    path = storage_path or config.LOCAL_STORAGE_PATH
    config.ensure_db_directory(path)

    with get_db(path) as conn:
        cursor = conn.cursor()

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS local_storage (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        ''')

        conn.commit()


def health_check(db_path: Optional[str] = None):
    """Check record store health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [row[0] for row in cursor.fetchall()]
            return "records" in table_names
    except sqlite3.Error:
        return False
