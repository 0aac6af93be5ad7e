"""
Remote record interface and its SQLite reference implementation.

The merge, undo and session logic only depend on read_record() and
write_field(); any store honouring the version check can stand in.
"""

import asyncio
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Mapping, Optional, Tuple

from .db import get_db, init_db
from .enums import EDITABLE_FIELDS
from .errors import NetworkFailure, RecordNotFoundError, ValidationFailure
from .schema import VersionedRecord, WriteResult
from .validation import validate_field_value, validate_fields
from ..util.logging import logger


class RemoteRecordStore(ABC):
    """Read/write/version-check interface to the shared record store."""

    @abstractmethod
    async def read_record(self, record_id: str) -> VersionedRecord:
        """Fetch the current row. Raises RecordNotFoundError or NetworkFailure."""

    @abstractmethod
    async def write_field(self, record_id: str, field: str, value: str,
                          expected_version: Optional[int]) -> WriteResult:
        """
        Write one field if the row is still at expected_version.

        expected_version=None writes unconditionally. On a version mismatch the
        result carries conflict=True and the current row.
        """


class SQLiteRecordStore(RemoteRecordStore):
    """Records table with an integer version column; sqlite calls run in a worker thread."""

    def __init__(self, db_path: Optional[str] = None, writer: str = "inline-edit"):
        self.db_path = db_path
        self.writer = writer
        init_db(db_path)

    async def read_record(self, record_id: str) -> VersionedRecord:
        try:
            record = await asyncio.to_thread(self._fetch, record_id)
        except sqlite3.OperationalError as e:
            raise NetworkFailure(f"Record store unavailable: {e}") from e

        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    async def write_field(self, record_id: str, field: str, value: str,
                          expected_version: Optional[int]) -> WriteResult:
        if field not in EDITABLE_FIELDS:
            raise ValidationFailure(field, value)

        try:
            updated, current = await asyncio.to_thread(self._write, record_id, field, value, expected_version)
        except sqlite3.OperationalError as e:
            raise NetworkFailure(f"Record store unavailable: {e}") from e

        if current is None:
            raise RecordNotFoundError(record_id)

        if updated == 0:
            logger.debug(f"Version mismatch on record {record_id}: expected {expected_version}, "
                         f"found {current.version}")
            return WriteResult(success=False, conflict=True, current=current)

        return WriteResult(success=True, new_version=current.version)

    def _write(self, record_id: str, field: str, value: str,
               expected_version: Optional[int]) -> Tuple[int, Optional[VersionedRecord]]:
        """Update and re-read inside one transaction so the version read back is our own."""
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            if expected_version is None:
                cursor.execute(
                    f"UPDATE records SET {field} = ?, version = version + 1, "
                    "updated_at = CURRENT_TIMESTAMP, updated_by = ? WHERE id = ?",
                    (value, self.writer, str(record_id))
                )
            else:
                cursor.execute(
                    f"UPDATE records SET {field} = ?, version = version + 1, "
                    "updated_at = CURRENT_TIMESTAMP, updated_by = ? WHERE id = ? AND version = ?",
                    (value, self.writer, str(record_id), int(expected_version))
                )
            updated = cursor.rowcount
            cursor.execute(
                "SELECT id, category, urgency, action, version, updated_at FROM records WHERE id = ?",
                (str(record_id),)
            )
            row = cursor.fetchone()
            conn.commit()
        return updated, self._row_to_record(row) if row else None

    # Seeding and listing helpers used by the API and tests

    def create_record(self, record_id: str, fields: Mapping[str, str], version: int = 1) -> VersionedRecord:
        values = validate_fields(fields)
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "INSERT INTO records (id, category, urgency, action, version) VALUES (?, ?, ?, ?, ?)",
                (str(record_id), values["category"], values["urgency"], values["action"], int(version))
            )
            conn.commit()
        return self._fetch(record_id)

    def update_record(self, record_id: str, field: str, value: str, writer: str = "external") -> VersionedRecord:
        """Unconditionally change a field, as another actor would."""
        value = validate_field_value(field, value)
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                f"UPDATE records SET {field} = ?, version = version + 1, "
                "updated_at = CURRENT_TIMESTAMP, updated_by = ? WHERE id = ?",
                (value, writer, str(record_id))
            )
            conn.commit()
        record = self._fetch(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    def list_records(self, limit: int = 100) -> List[VersionedRecord]:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT id, category, urgency, action, version, updated_at FROM records ORDER BY id LIMIT ?",
                (limit,)
            )
            return [self._row_to_record(row) for row in cursor.fetchall()]

    def _fetch(self, record_id: str) -> Optional[VersionedRecord]:
        with get_db(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute(
                "SELECT id, category, urgency, action, version, updated_at FROM records WHERE id = ?",
                (str(record_id),)
            )
            row = cursor.fetchone()
        return self._row_to_record(row) if row else None

    @staticmethod
    def _row_to_record(row) -> VersionedRecord:
        record_id, category, urgency, action, version, updated_at = row
        if isinstance(updated_at, str):
            try:
                updated_at = datetime.fromisoformat(updated_at)
            except ValueError:
                updated_at = None
        return VersionedRecord(
            id=record_id,
            fields={"category": category, "urgency": urgency, "action": action},
            version=version,
            updated_at=updated_at
        )
