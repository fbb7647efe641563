# ============================================================================
# test_logger.py -- Tests for the structlog setup
# ============================================================================
#
# COVERS:
#   TestLoggerSetup -- file handlers attached once, JSON lines on disk
#   TestLogDir      -- first directory wins, later ones are reported
#   TestEntries     -- builder field names
#
# RUN:
#   python -m pytest tests/test_logger.py -v
#
# INTERNET ACCESS: NONE
# ============================================================================

import json
import logging

from bulkdiag.monitoring import logger as logger_module
from bulkdiag.monitoring.logger import (
    BatchFailureLogEntry,
    SessionLogEntry,
    get_app_logger,
    initialize_logging,
)


class TestLoggerSetup:

    def test_handler_attached_once(self, isolated_logs):
        for _ in range(5):
            get_app_logger("bulkdiag.session")
        handlers = [h for h in logging.getLogger("bulkdiag.session").handlers
                    if isinstance(h, logging.FileHandler)]
        assert len(handlers) == 1

    def test_event_written_as_json(self, isolated_logs):
        get_app_logger("bulkdiag.session").info("session_started", session_id="upload_1_abc")
        lines = [l for p in isolated_logs.glob("app_*.log")
                 for l in p.read_text(encoding="utf-8").splitlines() if l.strip()]
        entry = json.loads(lines[-1])
        assert entry["event"] == "session_started"
        assert entry["session_id"] == "upload_1_abc"
        assert entry["level"] == "info"
        assert "timestamp" in entry


class TestLogDir:

    def test_same_dir_reuses_setup(self, isolated_logs):
        current = logger_module._logger_setup
        assert initialize_logging(str(isolated_logs)) is current

    def test_other_dir_is_reported(self, isolated_logs, tmp_path, caplog):
        current = logger_module._logger_setup
        with caplog.at_level(logging.WARNING):
            result = initialize_logging(str(tmp_path / "elsewhere"))
        assert result is current
        assert result.same_dir(str(isolated_logs))
        assert "log_dir_ignored" in caplog.text
        assert not (tmp_path / "elsewhere").exists()


class TestEntries:

    def test_batch_failure_entry(self):
        entry = BatchFailureLogEntry.build(
            session_id="s", batch_number=3, batch_size=100, error_kind="timeout",
            retry_attempt=1, processing_time_ms=12.345, consecutive_failures=2,
            error_message="statement timeout", data_sample={"sku": "A1"},
        )
        assert entry["processing_time_ms"] == 12.35
        assert entry["data_sample"] == {"sku": "A1"}

    def test_session_entry(self):
        entry = SessionLogEntry.build(
            session_id="s", status="partial", total_batches=10, failed_batches=2,
            duration_ms=1000.0, persisted=True, recommended_actions=("a", "b"),
        )
        assert entry["recommended_actions"] == ["a", "b"]
        assert entry["persisted"] is True
