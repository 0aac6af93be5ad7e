"""
Structured logging for instant edits, conflicts, undo and local storage upkeep.
"""

import logging
from typing import Any, Dict, List


class StructuredLogger:
    """Structured logger for save, merge, undo and storage operations."""

    def __init__(self, name: str = "fieldguard"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        if status in ("failed", "error"):
            self.logger.error(message)
        elif status in ("conflict", "offline", "rejected"):
            self.logger.warning(message)
        else:
            self.logger.info(message)

    def log_save(self, record_id: Any, field: str, value: str = None, status: str = "success",
                 details: Dict[str, Any] = None):
        """Log an instant-save attempt on one field."""
        log_details = {"record_id": record_id, "field": field}
        if value is not None:
            log_details["value"] = _truncate(value)
        if details:
            log_details.update(details)

        self.log_operation("edit.save", status, log_details)

    def log_conflict(self, record_id: Any, conflicts: List[Any], expected_version: int = None,
                     server_version: int = None):
        """Log a version conflict that could not be auto-merged."""
        log_details = {
            "record_id": record_id,
            "fields": [getattr(c, "field_name", str(c)) for c in conflicts],
            "expected_version": expected_version,
            "server_version": server_version
        }
        self.log_operation("edit.conflict", "conflict", log_details)

    def log_merge(self, record_id: Any, merged_fields: List[str], server_version: int = None):
        """Log a silent auto-merge."""
        log_details = {
            "record_id": record_id,
            "merged_fields": merged_fields,
            "server_version": server_version
        }
        self.log_operation("edit.auto_merge", "success", log_details)

    def log_undo(self, operation: str, entry_id: str = None, status: str = "success",
                 details: Dict[str, Any] = None):
        """Log an undo lifecycle event (recorded, executed, cleared, expired)."""
        log_details = {}
        if entry_id:
            log_details["entry_id"] = entry_id
        if details:
            log_details.update(details)

        self.log_operation(f"undo.{operation}", status, log_details)

    def log_cleanup(self, keys_removed: int, bytes_freed: int, removed_keys: List[str] = None):
        """Log a local storage cleanup pass."""
        log_details = {"keys_removed": keys_removed, "bytes_freed": bytes_freed}
        if removed_keys:
            log_details["removed_keys"] = removed_keys[:10]

        self.log_operation("storage.cleanup", "success", log_details)

    def log_queue(self, operation: str, submission_id: str = None, status: str = "success",
                  details: Dict[str, Any] = None):
        """Log a pending-queue operation."""
        log_details = {}
        if submission_id:
            log_details["submission_id"] = submission_id
        if details:
            log_details.update(details)

        self.log_operation(f"queue.{operation}", status, log_details)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


def _truncate(value: Any, limit: int = 50) -> str:
    text = str(value)
    return text[:limit] + "..." if len(text) > limit else text


# Global logger instance
logger = StructuredLogger()
