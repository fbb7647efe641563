# ============================================================================
# BulkDiag -- Structured Logger (bulkdiag/monitoring/logger.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   One structlog configuration for the whole engine. Each session event
#   (session_started, batch_failed, session_finalized, persist_failed)
#   becomes one JSON line in a dated file under the log directory.
#
# FILES:
#   - app_YYYY-MM-DD.log:   session lifecycle and batch outcomes
#   - error_YYYY-MM-DD.log: persistence failures and other engine faults
#
# ONE LOG DIRECTORY PER PROCESS:
#   The first initialize_logging() call picks the directory. Loggers are
#   process-wide (logging.getLogger(name)), so a later call with another
#   directory cannot get its own files; it is logged as log_dir_ignored
#   and the existing directory stays in use.
#
# ENTRY BUILDERS:
#   BatchFailureLogEntry and SessionLogEntry at the bottom keep the field
#   names of the two main events identical wherever they are emitted.
#
# INTERNET ACCESS: None -- writes to local files only
# ============================================================================

import os
import sys
import logging
from pathlib import Path
from typing import Optional, Dict, Any, Set, Tuple
import structlog
from datetime import datetime


# ============================================================================
# LOGGER CONFIGURATION
# ============================================================================

class LoggerSetup:
    """
    structlog configuration plus per-file handlers for one log directory.

    File handlers are attached at most once per (logger name, log type),
    so building many sessions in one process does not duplicate lines.
    """

    def __init__(self, log_dir: str = "logs"):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._configured = False
        self._attached: Set[Tuple[str, str]] = set()

    def setup(self) -> None:
        if self._configured:
            return

        # Console gets warnings and above; files get everything
        logging.basicConfig(
            format="%(message)s",
            stream=sys.stdout,
            level=logging.WARNING,
        )

        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                structlog.processors.JSONRenderer(),
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            cache_logger_on_first_use=True,
        )

        self._configured = True

    def same_dir(self, log_dir: str) -> bool:
        return os.path.abspath(str(self.log_dir)) == os.path.abspath(str(log_dir))

    def get_logger(self, name: str) -> structlog.BoundLogger:
        """Console-only logger."""
        self.setup()
        return structlog.get_logger(name)

    def get_file_logger(self, name: str, log_type: str = "app") -> structlog.BoundLogger:
        """Logger whose events also land in <log_dir>/<log_type>_<date>.log"""
        self.setup()
        key = (name, log_type)
        if key not in self._attached:
            path = self.log_dir / f"{log_type}_{datetime.now().strftime('%Y-%m-%d')}.log"
            handler = logging.FileHandler(path, encoding="utf-8")
            handler.setFormatter(logging.Formatter("%(message)s"))

            py_logger = logging.getLogger(name)
            py_logger.addHandler(handler)
            py_logger.setLevel(logging.DEBUG)
            self._attached.add(key)

        return structlog.get_logger(name)


# ============================================================================
# SINGLETON INSTANCE
# ============================================================================

_logger_setup: Optional[LoggerSetup] = None


def initialize_logging(log_dir: str = "logs") -> LoggerSetup:
    """Configure logging on first call; later calls reuse that directory."""
    global _logger_setup
    if _logger_setup is None:
        _logger_setup = LoggerSetup(log_dir)
        _logger_setup.setup()
    elif log_dir and not _logger_setup.same_dir(log_dir):
        _logger_setup.get_logger("bulkdiag.logging").warning(
            "log_dir_ignored",
            requested=str(log_dir),
            using=str(_logger_setup.log_dir),
        )
    return _logger_setup


def get_logger(name: str) -> structlog.BoundLogger:
    if _logger_setup is None:
        initialize_logging()
    return _logger_setup.get_logger(name)


def get_app_logger(name: str = "app") -> structlog.BoundLogger:
    """Writes to app_YYYY-MM-DD.log"""
    if _logger_setup is None:
        initialize_logging()
    return _logger_setup.get_file_logger(name, "app")


def get_error_logger(name: str = "error") -> structlog.BoundLogger:
    """Writes to error_YYYY-MM-DD.log"""
    if _logger_setup is None:
        initialize_logging()
    return _logger_setup.get_file_logger(name, "error")


# ============================================================================
# LOG ENTRY BUILDERS
# ============================================================================

class BatchFailureLogEntry:
    """Fields of a batch_failed event."""

    @staticmethod
    def build(
        session_id: str,
        batch_number: int,
        batch_size: int,
        error_kind: str,
        retry_attempt: int,
        processing_time_ms: float,
        consecutive_failures: int,
        error_message: Optional[str] = None,
        data_sample: Any = None,
    ) -> Dict[str, Any]:
        """data_sample must already be sanitized."""
        return {
            "session_id": session_id,
            "batch_number": batch_number,
            "batch_size": batch_size,
            "error_kind": error_kind,
            "retry_attempt": retry_attempt,
            "processing_time_ms": round(processing_time_ms, 2),
            "consecutive_failures": consecutive_failures,
            "error_message": error_message,
            "data_sample": data_sample,
        }


class SessionLogEntry:
    """Fields of a session_finalized event."""

    @staticmethod
    def build(
        session_id: str,
        status: str,
        total_batches: int,
        failed_batches: int,
        duration_ms: float,
        persisted: bool,
        recommended_actions: Optional[list] = None,
    ) -> Dict[str, Any]:
        return {
            "session_id": session_id,
            "status": status,
            "total_batches": total_batches,
            "failed_batches": failed_batches,
            "duration_ms": round(duration_ms, 2),
            "persisted": persisted,
            "recommended_actions": list(recommended_actions or []),
        }
