# ============================================================================
# BulkDiag -- bulk-ingestion diagnostics engine
# ============================================================================
#
#   from bulkdiag import DiagnosticsSession, SQLiteLogStore
#
#   session = DiagnosticsSession(store=SQLiteLogStore("diag.sqlite3"))
#   session.start_session(total_records=5000)
#   ...
#   report = session.finalize_session("success")
# ============================================================================

from bulkdiag.core.classifier import ErrorClassifier, classify_error
from bulkdiag.core.config import Config, load_config
from bulkdiag.core.exceptions import BulkDiagError, ConfigError, PersistError
from bulkdiag.core.models import (
    BatchFailureRecord,
    ErrorAnalysis,
    ErrorKind,
    ErrorSummary,
    LogRecord,
    ResourceSnapshot,
    SessionMetrics,
    SessionReport,
    SessionState,
    SessionStatus,
)
from bulkdiag.core.patterns import PatternAnalyzer
from bulkdiag.core.sanitizer import sanitize_data_sample
from bulkdiag.core.session import (
    DiagnosticsSession,
    create_batch_id,
    format_error_summary,
)
from bulkdiag.monitoring.log_store import InMemoryLogStore, LogStore, SQLiteLogStore
from bulkdiag.monitoring.resources import (
    PsutilResourceProbe,
    ResourceProbe,
    ResourceSampler,
)

__version__ = "0.1.0"

__all__ = [
    "BatchFailureRecord",
    "BulkDiagError",
    "Config",
    "ConfigError",
    "DiagnosticsSession",
    "ErrorAnalysis",
    "ErrorClassifier",
    "ErrorKind",
    "ErrorSummary",
    "InMemoryLogStore",
    "LogRecord",
    "LogStore",
    "PatternAnalyzer",
    "PersistError",
    "PsutilResourceProbe",
    "ResourceProbe",
    "ResourceSampler",
    "ResourceSnapshot",
    "SQLiteLogStore",
    "SessionMetrics",
    "SessionReport",
    "SessionState",
    "SessionStatus",
    "classify_error",
    "create_batch_id",
    "format_error_summary",
    "load_config",
    "sanitize_data_sample",
]
