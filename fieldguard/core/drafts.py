"""
Draft store: namespaced, versioned, TTL-governed local persistence.

Keys follow {prefix}:{version}:{category}:{identifier}. Drafts are kept per row
until saved, discarded or garbage-collected; session snapshots and the pending
queue share the same namespace and the same cleanup pass.
"""

import json
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional

from . import config
from .errors import FieldGuardError, StorageCorruption
from .schema import CleanupResult, DraftEntry, PendingSubmission, SessionSnapshot, StorageStats
from .storage import LocalStorage
from .validation import validate_fields
from ..util.logging import logger

PENDING_QUEUE_ID = "queue"
SESSION_STATE_ID = "state"
PREFERENCES_ID = "user"


def _byte_size(value: Optional[str]) -> int:
    return len(value.encode("utf-8")) if value else 0


class DraftStore:
    """Local persistence for drafts, session snapshots and preferences."""

    def __init__(self, storage: LocalStorage, prefix: Optional[str] = None,
                 version: Optional[str] = None, now: Callable[[], datetime] = datetime.now):
        self.storage = storage
        self.prefix = prefix or config.STORAGE_PREFIX
        self.version = version or config.STORAGE_VERSION
        self.now = now

    # Key layout

    def key(self, category: str, identifier: Any) -> str:
        """Build a namespaced storage key."""
        if category not in config.STORAGE_CATEGORIES:
            raise ValueError(f"Unknown storage category: {category}")
        return f"{self.prefix}:{self.version}:{category}:{identifier}"

    def draft_key(self, row_id: Any) -> str:
        return self.key("draft", row_id)

    def pending_key(self) -> str:
        return self.key("pending", PENDING_QUEUE_ID)

    def session_key(self) -> str:
        return self.key("session", SESSION_STATE_ID)

    def prefs_key(self) -> str:
        return self.key("prefs", PREFERENCES_ID)

    def _parse_key(self, key: str) -> Optional[Dict[str, str]]:
        """Split an app key into its parts; None for keys outside the app prefix."""
        if not key.startswith(f"{self.prefix}:"):
            return None
        parts = key[len(self.prefix) + 1:].split(":", 2)
        return {
            "version": parts[0] if len(parts) > 0 else "",
            "category": parts[1] if len(parts) > 1 else "",
            "identifier": parts[2] if len(parts) > 2 else "",
        }

    # Drafts

    def save_draft(self, row_id: Any, fields: Mapping[str, str], version: int) -> DraftEntry:
        """Save (or overwrite) the draft for a row."""
        entry = DraftEntry(
            row_id=str(row_id),
            data=dict(fields),
            saved_at=self.now(),
            version=int(version)
        )
        self.storage.set_item(self.draft_key(row_id), json.dumps(entry.to_dict()))
        logger.debug(f"Draft saved for row {row_id} at version {version}")
        return entry

    def get_draft(self, row_id: Any) -> Optional[DraftEntry]:
        """Load a draft; expired or corrupted drafts are removed and treated as absent."""
        key = self.draft_key(row_id)
        raw = self.storage.get_item(key)
        if raw is None:
            return None

        try:
            entry = self._decode_draft(key, raw)
        except StorageCorruption as e:
            logger.warning(str(e))
            self.storage.remove_item(key)
            return None

        if self._age_seconds(entry.saved_at) > config.DRAFT_MAX_AGE_SEC:
            self.storage.remove_item(key)
            return None

        return entry

    def remove_draft(self, row_id: Any) -> bool:
        """Remove a row's draft; returns True if one existed."""
        key = self.draft_key(row_id)
        if self.storage.get_item(key) is None:
            return False
        self.storage.remove_item(key)
        logger.debug(f"Draft removed for row {row_id}")
        return True

    def get_draft_row_ids(self) -> List[str]:
        """List the row IDs that currently have a draft under this schema version."""
        draft_prefix = f"{self.prefix}:{self.version}:draft:"
        return [key[len(draft_prefix):] for key in self.storage.keys() if key.startswith(draft_prefix)]

    # Session recovery snapshot

    def save_session_snapshot(self, row_id: Any, edit_data: Mapping[str, str],
                              original_version: int, return_url: str = "") -> SessionSnapshot:
        snapshot = SessionSnapshot(
            editing_row_id=str(row_id),
            edit_data=dict(edit_data),
            original_version=int(original_version),
            return_url=return_url,
            saved_at=self.now()
        )
        self.storage.set_item(self.session_key(), json.dumps(snapshot.to_dict()))
        return snapshot

    def get_session_snapshot(self) -> Optional[SessionSnapshot]:
        key = self.session_key()
        raw = self.storage.get_item(key)
        if raw is None:
            return None

        try:
            snapshot = SessionSnapshot.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError):
            self.storage.remove_item(key)
            return None

        if self._age_seconds(snapshot.saved_at) > config.SESSION_MAX_AGE_SEC:
            self.storage.remove_item(key)
            return None

        return snapshot

    def clear_session_snapshot(self) -> None:
        self.storage.remove_item(self.session_key())

    # Preferences (never expire)

    def get_preferences(self) -> Dict[str, Any]:
        raw = self.storage.get_item(self.prefs_key())
        if not raw:
            return {}
        try:
            prefs = json.loads(raw)
        except ValueError:
            return {}
        return prefs if isinstance(prefs, dict) else {}

    def save_preferences(self, prefs: Mapping[str, Any]) -> None:
        self.storage.set_item(self.prefs_key(), json.dumps(dict(prefs)))

    # Garbage collection

    def cleanup_stale_storage(self) -> CleanupResult:
        """
        Remove stale app entries from local storage.

        An entry is removed if it belongs to another schema version, cannot be
        decoded, is older than its category's max age, or is missing required
        fields. Malformed submissions are pruned from a pending queue that still
        holds valid ones. Safe to run repeatedly and at process start.
        """
        result = CleanupResult()
        rewrites: Dict[str, str] = {}

        for key in self.storage.keys():
            parts = self._parse_key(key)
            if parts is None:
                continue

            value = self.storage.get_item(key)
            if self._should_remove(key, parts, value):
                result.removed_keys.append(key)
                result.bytes_freed += _byte_size(value)
            elif parts["category"] == "pending":
                pruned = self._prune_submissions(key, value)
                if pruned is not None:
                    rewrites[key] = pruned
                    result.bytes_freed += _byte_size(value) - _byte_size(pruned)

        for key in result.removed_keys:
            self.storage.remove_item(key)
        for key, value in rewrites.items():
            self.storage.set_item(key, value)

        result.keys_removed = len(result.removed_keys)
        logger.log_cleanup(result.keys_removed, result.bytes_freed, result.removed_keys)
        return result

    def get_storage_stats(self) -> StorageStats:
        """Usage statistics for all of local storage and for this app's entries."""
        stats = StorageStats()

        for key in self.storage.keys():
            value = self.storage.get_item(key) or ""
            size = _byte_size(value)
            stats.total_keys += 1
            stats.total_bytes += size

            parts = self._parse_key(key)
            if parts is None:
                continue

            stats.app_keys += 1
            stats.app_bytes += size

            if parts["version"] != self.version:
                continue
            if parts["category"] == "draft":
                stats.draft_count += 1
            elif parts["category"] == "pending":
                try:
                    submissions = self._decode_submissions(key, value)
                    stats.pending_count += sum(1 for sub in submissions if self._is_valid_submission(sub))
                except StorageCorruption:
                    # corrupted queues are reported by cleanup, not stats
                    continue

        return stats

    def clear_all_app_storage(self) -> int:
        """Remove every entry under the app prefix, across all schema versions."""
        keys = [key for key in self.storage.keys() if self._parse_key(key) is not None]
        for key in keys:
            self.storage.remove_item(key)
        logger.log_operation("storage.clear_all", "success", {"keys_removed": len(keys)})
        return len(keys)

    def _should_remove(self, key: str, parts: Dict[str, str], value: Optional[str]) -> bool:
        if parts["version"] != self.version:
            return True

        category = parts["category"]
        if category not in config.STORAGE_CATEGORIES:
            return False

        if not value:
            return True

        try:
            if category == "draft":
                entry = self._decode_draft(key, value)
                return self._age_seconds(entry.saved_at) > config.DRAFT_MAX_AGE_SEC

            if category == "pending":
                submissions = self._decode_submissions(key, value)
                if not submissions:
                    return False
                return all(self._submission_is_stale(key, sub) for sub in submissions)

            if category == "session":
                data = self._decode_json(key, value)
                saved_at = self._parse_timestamp(key, data.get("saved_at") if isinstance(data, dict) else None)
                return self._age_seconds(saved_at) > config.SESSION_MAX_AGE_SEC

            self._decode_json(key, value)
            return False

        except StorageCorruption as e:
            logger.debug(str(e))
            return True

    def _decode_json(self, key: str, raw: str) -> Any:
        try:
            return json.loads(raw)
        except ValueError:
            raise StorageCorruption(key, "unparseable JSON") from None

    def _decode_draft(self, key: str, raw: str) -> DraftEntry:
        data = self._decode_json(key, raw)
        if not isinstance(data, dict) or not isinstance(data.get("data"), dict):
            raise StorageCorruption(key, "missing draft data")
        try:
            validate_fields(data["data"])
            return DraftEntry.from_dict(data)
        except (KeyError, TypeError, ValueError, FieldGuardError):
            raise StorageCorruption(key, "malformed draft entry") from None

    def _decode_submissions(self, key: str, raw: Optional[str]) -> List[Dict[str, Any]]:
        data = self._decode_json(key, raw or "")
        if isinstance(data, list):
            submissions = data
        elif isinstance(data, dict):
            submissions = data.get("submissions")
        else:
            submissions = None
        if not isinstance(submissions, list):
            raise StorageCorruption(key, "missing submissions list")
        return [sub if isinstance(sub, dict) else {} for sub in submissions]

    def _submission_is_stale(self, key: str, submission: Dict[str, Any]) -> bool:
        if not self._is_valid_submission(submission):
            return True
        try:
            queued_at = self._parse_timestamp(key, submission.get("queued_at"))
        except StorageCorruption:
            return True
        return self._age_seconds(queued_at) > config.PENDING_QUEUE_TTL_SEC

    @staticmethod
    def _is_valid_submission(submission: Dict[str, Any]) -> bool:
        try:
            PendingSubmission.from_dict(submission)
        except (KeyError, TypeError, ValueError):
            return False
        return True

    def _prune_submissions(self, key: str, raw: Optional[str]) -> Optional[str]:
        """Queue payload without its malformed submissions; None when nothing changes."""
        try:
            data = self._decode_json(key, raw or "")
            submissions = self._decode_submissions(key, raw)
        except StorageCorruption:
            return None

        valid = [sub for sub in submissions if self._is_valid_submission(sub)]
        if len(valid) == len(submissions):
            return None

        logger.warning(f"Dropped {len(submissions) - len(valid)} malformed submission(s) from {key}")
        if isinstance(data, dict):
            return json.dumps({**data, "submissions": valid})
        return json.dumps(valid)

    def _parse_timestamp(self, key: str, value: Any) -> datetime:
        if not isinstance(value, str):
            raise StorageCorruption(key, "missing timestamp")
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            raise StorageCorruption(key, f"bad timestamp {value!r}") from None

    def _age_seconds(self, when: datetime) -> float:
        return (self.now() - when).total_seconds()

