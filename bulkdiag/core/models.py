# ============================================================================
# BulkDiag -- Data Model (bulkdiag/core/models.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Defines every record the diagnostics engine produces or passes around:
#
#     ErrorKind           -- the six failure categories
#     BatchFailureRecord  -- one failed batch attempt, with context
#     SessionMetrics      -- running counters and averages for one session
#     ResourceSnapshot    -- memory / pool / cpu at one moment
#     ErrorAnalysis       -- PatternAnalyzer output
#     SessionReport       -- what finalize_session() returns
#     ErrorSummary        -- live error counts for a progress UI
#     LogRecord           -- the single row handed to a log store
#
#   All records convert to plain JSON-safe dicts with to_dict().
# ============================================================================

from __future__ import annotations

import copy
import json
from enum import Enum
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts is not None else None


class ErrorKind(str, Enum):
    """Category of a failed batch. Exactly one per failure."""

    TIMEOUT = "timeout"
    CONSTRAINT = "constraint"
    NETWORK = "network"
    VALIDATION = "validation"
    MEMORY = "memory"
    UNKNOWN = "unknown"


class SessionStatus(str, Enum):
    """Outcome the upload driver reports when it finalizes a session."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class SessionState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    FINALIZED = "finalized"


# ============================================================================
# FAILURE RECORDS
# ============================================================================

@dataclass
class ContextSnapshot:
    """Where in the upload a failure happened."""
    total_records_in_session: int
    progress_percent: int
    consecutive_failures_at_time_of_error: int


@dataclass
class BatchFailureRecord:
    """
    One failed batch attempt.

    A batch retried three times produces three records, each with its own
    retry_attempt. records_succeeded is always 0: a batch either lands in
    full or is reported here.
    """
    batch_id: str
    batch_number: int
    batch_size: int
    records_attempted: int
    error_kind: ErrorKind
    error_message: str
    retry_attempt: int
    processing_time_ms: float
    context_snapshot: ContextSnapshot
    records_succeeded: int = 0
    error_code: Optional[str] = None
    error_stack: Optional[str] = None
    memory_usage_mb: Optional[float] = None
    sample_of_offending_data: Any = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        # Built by hand: asdict() would deep-copy the data sample, which
        # may hold objects that cannot be copied.
        return {
            "batch_id": self.batch_id,
            "batch_number": self.batch_number,
            "batch_size": self.batch_size,
            "records_attempted": self.records_attempted,
            "records_succeeded": self.records_succeeded,
            "error_kind": self.error_kind.value,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "error_stack": self.error_stack,
            "retry_attempt": self.retry_attempt,
            "processing_time_ms": self.processing_time_ms,
            "memory_usage_mb": self.memory_usage_mb,
            "sample_of_offending_data": self.sample_of_offending_data,
            "timestamp": _iso(self.timestamp),
            "context_snapshot": asdict(self.context_snapshot),
        }


# ============================================================================
# SESSION METRICS
# ============================================================================

@dataclass
class SessionMetrics:
    """
    Running aggregate for one ingestion session.

    Only DiagnosticsSession mutates this, and only while holding its lock.
    Callers outside the session get copies (see copy()).
    """
    session_id: str
    total_records: int
    start_time: datetime = field(default_factory=utc_now)
    end_time: Optional[datetime] = None

    total_batches: int = 0
    successful_batches: int = 0
    failed_batches: int = 0
    total_retries: int = 0
    records_succeeded: int = 0

    average_batch_size: float = 0.0
    average_processing_time_ms: float = 0.0
    batch_size_progression: List[int] = field(default_factory=list)
    peak_memory_usage_mb: float = 0.0

    total_timeout_errors: int = 0
    total_constraint_errors: int = 0
    total_validation_errors: int = 0
    total_network_errors: int = 0
    total_memory_errors: int = 0
    total_unknown_errors: int = 0

    resource_contention_detected: bool = False

    def kind_total(self, kind: ErrorKind) -> int:
        return getattr(self, f"total_{kind.value}_errors")

    def add_kind(self, kind: ErrorKind, n: int = 1) -> None:
        attr = f"total_{kind.value}_errors"
        setattr(self, attr, getattr(self, attr) + n)

    def set_kind(self, kind: ErrorKind, n: int) -> None:
        setattr(self, f"total_{kind.value}_errors", n)

    def error_breakdown(self) -> Dict[str, int]:
        return {kind.value: self.kind_total(kind) for kind in ErrorKind}

    @property
    def duration_ms(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds() * 1000.0

    def copy(self) -> "SessionMetrics":
        return copy.deepcopy(self)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["start_time"] = _iso(self.start_time)
        d["end_time"] = _iso(self.end_time)
        return d


# ============================================================================
# RESOURCE SNAPSHOTS
# ============================================================================

@dataclass
class ResourceSnapshot:
    """Point-in-time process resource usage. Zeros mean "not available"."""
    memory_usage_mb: float = 0.0
    connection_pool_usage: float = 0.0
    active_connections: int = 0
    cpu_load: Optional[float] = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["timestamp"] = _iso(self.timestamp)
        return d


# ============================================================================
# ANALYSIS AND REPORTS
# ============================================================================

@dataclass
class ErrorAnalysis:
    """Clusters are lists of progress percents (0-100) where failures hit."""
    timeout_clusters: List[int] = field(default_factory=list)
    constraint_hotspots: List[int] = field(default_factory=list)
    memory_pressure_points: List[int] = field(default_factory=list)
    recommended_actions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ErrorSummary:
    total_errors: int
    error_kind_counts: Dict[str, int]
    consecutive_failures: int
    resource_contention_detected: bool

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SessionReport:
    """
    Final output of one session.

    detailed_errors holds at most ReportConfig.max_detailed_errors records
    (the earliest ones); total_errors is the full count.
    persisted is False when the log store failed or was never called.
    """
    session_id: str
    status: SessionStatus
    metrics: SessionMetrics
    error_analysis: ErrorAnalysis
    detailed_errors: List[BatchFailureRecord] = field(default_factory=list)
    total_errors: int = 0
    persisted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "status": self.status.value,
            "metrics": self.metrics.to_dict(),
            "error_analysis": self.error_analysis.to_dict(),
            "detailed_errors": [r.to_dict() for r in self.detailed_errors],
            "total_errors": self.total_errors,
            "persisted": self.persisted,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


@dataclass
class LogRecord:
    """One row for the external log store."""
    session_type: str
    status: str
    records_processed: int
    records_inserted: int
    records_updated: int
    duration_ms: float
    errors_json: Optional[str] = None
    actor_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
