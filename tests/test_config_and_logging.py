"""
Configuration validation, structured logging and maintenance script tests.
"""

import json
import logging
import sys
from pathlib import Path

import pytest
from unittest.mock import patch

from fieldguard.core import config
from fieldguard.core.drafts import DraftStore
from fieldguard.core.storage import SQLiteStorage
from fieldguard.util.logging import StructuredLogger, logger

sys.path.insert(0, str(Path(__file__).parent.parent / "scripts"))

import cleanup_storage


class TestConfig:
    """Test configuration defaults and validation."""

    def test_defaults(self):
        assert config.STORAGE_PREFIX == "correction-ui"
        assert config.STORAGE_VERSION == "v1"
        assert config.get_undo_window() == 30
        assert config.get_storage_namespace() == ("correction-ui", "v1")
        assert config.PENDING_MAX_ATTEMPTS == 3
        assert config.MAX_PENDING_QUEUE_SIZE == 50

    def test_default_config_is_valid(self):
        assert config.validate_config() == []

    def test_invalid_values_reported(self):
        with patch.object(config, "UNDO_WINDOW_SEC", 0), patch.object(config, "STORAGE_PREFIX", "a:b"):
            issues = config.validate_config()

        assert "UNDO_WINDOW_SEC must be >= 1" in issues
        assert any("STORAGE_PREFIX" in issue for issue in issues)

    def test_debug_enabled_reads_environment(self, monkeypatch):
        monkeypatch.setenv("DEBUG", "true")
        assert config.debug_enabled() is True
        monkeypatch.setenv("DEBUG", "false")
        assert config.debug_enabled() is False

    def test_ensure_db_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "records.db"
        config.ensure_db_directory(str(path))
        assert path.parent.exists()


class TestStructuredLogger:
    """Test structured log lines and level selection."""

    def test_operation_format(self, caplog):
        test_logger = StructuredLogger("fieldguard.test")
        with caplog.at_level(logging.INFO, logger="fieldguard.test"):
            test_logger.log_operation("edit.save", "success", {"record_id": "rec-1"})

        assert "Operation: edit.save, Status: success, Details: {'record_id': 'rec-1'}" in caplog.text

    def test_conflict_logged_as_warning(self, caplog):
        test_logger = StructuredLogger("fieldguard.test")
        with caplog.at_level(logging.INFO, logger="fieldguard.test"):
            test_logger.log_conflict("rec-1", [], expected_version=1, server_version=2)

        assert caplog.records[-1].levelno == logging.WARNING

    def test_failures_logged_as_error(self, caplog):
        test_logger = StructuredLogger("fieldguard.test")
        with caplog.at_level(logging.INFO, logger="fieldguard.test"):
            test_logger.log_save("rec-1", "category", "WORK", "failed")

        assert caplog.records[-1].levelno == logging.ERROR

    def test_long_values_truncated(self, caplog):
        test_logger = StructuredLogger("fieldguard.test")
        with caplog.at_level(logging.INFO, logger="fieldguard.test"):
            test_logger.log_save("rec-1", "category", "X" * 200)

        assert "X" * 50 + "..." in caplog.text
        assert "X" * 51 not in caplog.text

    def test_undo_and_queue_helpers(self, caplog):
        with caplog.at_level(logging.INFO, logger="fieldguard"):
            logger.log_undo("recorded", "undo-1", details={"kind": "single"})
            logger.log_queue("enqueued", "rec-1-1")

        assert "Operation: undo.recorded" in caplog.text
        assert "Operation: queue.enqueued" in caplog.text


class TestCleanupScript:
    """Test the storage maintenance command."""

    @pytest.fixture
    def storage_path(self, tmp_path):
        path = str(tmp_path / "local.db")
        storage = SQLiteStorage(path)
        storage.set_item("correction-ui:v0:draft:old", "{}")
        DraftStore(storage).save_draft("row-1", {"category": "WORK", "urgency": "LOW", "action": "FYI"}, 1)
        return path

    def test_cleanup_json(self, storage_path, capsys):
        assert cleanup_storage.main(["--storage-path", storage_path, "--json"]) == 0

        report = json.loads(capsys.readouterr().out)
        assert report["keys_removed"] == 1
        assert report["removed_keys"] == ["correction-ui:v0:draft:old"]

    def test_stats(self, storage_path, capsys):
        cleanup_storage.main(["--storage-path", storage_path, "--stats"])

        output = capsys.readouterr().out
        assert "Drafts: 1" in output
        assert SQLiteStorage(storage_path).get_item("correction-ui:v0:draft:old") == "{}"

    def test_clear_all(self, storage_path, capsys):
        cleanup_storage.main(["--storage-path", storage_path, "--clear-all"])

        assert "Removed 2 app storage entries" in capsys.readouterr().out
        assert SQLiteStorage(storage_path).keys() == []

    def test_conflicting_flags(self, storage_path):
        with pytest.raises(SystemExit):
            cleanup_storage.main(["--storage-path", storage_path, "--stats", "--clear-all"])
