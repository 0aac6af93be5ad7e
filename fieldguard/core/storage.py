"""
Local key/value storage backends.

Drafts, the offline queue, session snapshots and preferences all live in a
flat string-to-string store. The SQLite backend survives process restarts; the
in-memory backend is for tests and short-lived tools.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from . import config
from .db import get_db, init_local_storage


class LocalStorage(ABC):
    """Flat string key/value storage."""

    @abstractmethod
    def get_item(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    def set_item(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    def remove_item(self, key: str) -> None:
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        pass

    def __len__(self) -> int:
        return len(self.keys())


class MemoryStorage(LocalStorage):
    """Dictionary-backed storage."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self._items: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    def remove_item(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._items.keys())


class SQLiteStorage(LocalStorage):
    """Storage persisted in the local_storage table of a SQLite file."""

    def __init__(self, path: Optional[str] = None):
        self.path = path
        init_local_storage(path)

    def get_item(self, key: str) -> Optional[str]:
        with get_db(self._db_path()) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT value FROM local_storage WHERE key = ?", (key,))
            row = cursor.fetchone()
            return row[0] if row else None

    def set_item(self, key: str, value: str) -> None:
        with get_db(self._db_path()) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT INTO local_storage (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value)
            )
            conn.commit()

    def remove_item(self, key: str) -> None:
        with get_db(self._db_path()) as conn:
            cursor = conn.cursor()
            cursor.execute("DELETE FROM local_storage WHERE key = ?", (key,))
            conn.commit()

    def keys(self) -> List[str]:
        with get_db(self._db_path()) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT key FROM local_storage ORDER BY key")
            return [row[0] for row in cursor.fetchall()]

    def _db_path(self) -> str:
        return self.path or config.LOCAL_STORAGE_PATH
