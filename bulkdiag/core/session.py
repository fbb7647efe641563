# ============================================================================
# BulkDiag -- Diagnostics Session (bulkdiag/core/session.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Ties the engine together for ONE bulk import. The upload driver owns a
#   DiagnosticsSession and calls it after every batch:
#
#     session = DiagnosticsSession(store=SQLiteLogStore(db_path))
#     session.start_session(total_records=len(rows))
#     for n, batch in enumerate(batches, start=1):
#         try:
#             push(batch)
#             session.record_batch_success(n, len(batch), len(batch), ms)
#         except Exception as e:
#             session.record_batch_failure(n, len(batch), len(batch), e,
#                                          retry_attempt=0,
#                                          processing_time_ms=ms,
#                                          data_sample=batch[:2])
#         session.sample_resources()
#     report = session.finalize_session("partial")
#
# STATES:
#   idle --start_session--> active --finalize_session--> finalized
#   start_session on an active session throws the old one away (logged).
#
# FAILURE SEMANTICS:
#   Nothing in here raises on bad input. The only I/O is the log store
#   write at finalize time; if it fails the error is logged and the report
#   is still returned with persisted=False.
#
# THREAD SAFETY:
#   Every read and write of the counters and the failure log happens under
#   one RLock, so the running averages never interleave.
# ============================================================================

from __future__ import annotations

import json
import math
import threading
import time
import traceback
import uuid
from collections.abc import Mapping
from typing import Any, Dict, List, Optional, Union

from bulkdiag.core.classifier import ErrorClassifier, extract_message_and_code
from bulkdiag.core.config import Config
from bulkdiag.core.exceptions import PersistError
from bulkdiag.core.models import (
    BatchFailureRecord,
    ContextSnapshot,
    ErrorAnalysis,
    ErrorKind,
    ErrorSummary,
    LogRecord,
    ResourceSnapshot,
    SessionMetrics,
    SessionReport,
    SessionState,
    SessionStatus,
    utc_now,
)
from bulkdiag.core.patterns import PatternAnalyzer
from bulkdiag.core.sanitizer import DataSampleSanitizer
from bulkdiag.monitoring.log_store import LogStore, SQLiteLogStore
from bulkdiag.monitoring.logger import (
    BatchFailureLogEntry,
    SessionLogEntry,
    get_app_logger,
    get_error_logger,
    initialize_logging,
)
from bulkdiag.monitoring.resources import ResourceProbe, ResourceSampler


def safe_int(x, default=0) -> int:
    try:
        return int(x)
    except Exception:
        return default


def safe_float(x, default=0.0) -> float:
    try:
        value = float(x)
    except Exception:
        return default
    if math.isnan(value) or math.isinf(value):
        return default
    return value


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def new_session_id() -> str:
    """upload_<epoch ms>_<9 random hex chars>"""
    return f"upload_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def create_batch_id(session_id: str, batch_number: int) -> str:
    return f"{session_id}_batch_{batch_number}"


def _extract_stack(error: Any) -> Optional[str]:
    try:
        if isinstance(error, BaseException) and error.__traceback__ is not None:
            return "".join(traceback.format_exception(type(error), error, error.__traceback__))
        if isinstance(error, Mapping):
            stack = error.get("stack")
        else:
            stack = getattr(error, "stack", None)
        return str(stack) if stack else None
    except Exception:
        return None


def format_error_summary(summary: ErrorSummary) -> str:
    """
    One-line summary for a status bar.

    Example: "5 errors (timeout: 3, network: 2) | Resource contention detected"
    """
    if summary.total_errors == 0:
        return "No errors detected"

    kinds = ", ".join(f"{k}: {v}" for k, v in summary.error_kind_counts.items())
    text = f"{summary.total_errors} errors ({kinds})"
    if summary.consecutive_failures > 3:
        text += f" | {summary.consecutive_failures} consecutive failures"
    if summary.resource_contention_detected:
        text += " | Resource contention detected"
    return text


class DiagnosticsSession:
    """
    Diagnostics for one bulk import at a time.

    Args:
        config:   Config (defaults if None)
        probe:    ResourceProbe for memory/pool readings (zeros if None)
        store:    LogStore for the final report. If None and
                  config.paths.database is set, a SQLiteLogStore is opened.
        actor_id: Who ran the import; stored with the report.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        probe: Optional[ResourceProbe] = None,
        store: Optional[LogStore] = None,
        actor_id: Optional[str] = None,
    ):
        self.config = config or Config()
        self.actor_id = actor_id

        initialize_logging(self.config.paths.log_dir)
        self.logger = get_app_logger("bulkdiag.session")
        self.error_logger = get_error_logger("bulkdiag.errors")

        self.sampler = ResourceSampler(probe, capacity=self.config.sampling.ring_capacity)
        self.analyzer = PatternAnalyzer(self.config.analysis)
        self.sanitizer = DataSampleSanitizer(self.config.sanitizer)
        self.classifier = ErrorClassifier

        self.store = store
        if self.store is None and self.config.paths.database:
            try:
                self.store = SQLiteLogStore(self.config.paths.database)
            except PersistError as e:
                self.error_logger.error("log_store_unavailable", **e.to_dict())

        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._metrics = SessionMetrics(session_id="", total_records=0)
        self._failures: List[BatchFailureRecord] = []
        self._consecutive_failures = 0
        self._last_report: Optional[SessionReport] = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        with self._lock:
            return self._state

    @property
    def session_id(self) -> str:
        with self._lock:
            return self._metrics.session_id

    @property
    def consecutive_failures(self) -> int:
        with self._lock:
            return self._consecutive_failures

    def current_metrics(self) -> SessionMetrics:
        """Independent copy of the live metrics (safe to hand to a UI)."""
        with self._lock:
            return self._metrics.copy()

    def failures(self) -> List[BatchFailureRecord]:
        with self._lock:
            return list(self._failures)

    def error_summary(self) -> ErrorSummary:
        with self._lock:
            counts: Dict[str, int] = {}
            for f in self._failures:
                counts[f.error_kind.value] = counts.get(f.error_kind.value, 0) + 1
            return ErrorSummary(
                total_errors=len(self._failures),
                error_kind_counts=counts,
                consecutive_failures=self._consecutive_failures,
                resource_contention_detected=self._metrics.resource_contention_detected,
            )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_session(self, total_records: int) -> str:
        """Begin a new session, discarding any previous state. Returns its id."""
        with self._lock:
            if self._state == SessionState.ACTIVE:
                self.logger.warning(
                    "session_discarded",
                    session_id=self._metrics.session_id,
                    total_batches=self._metrics.total_batches,
                    failed_batches=self._metrics.failed_batches,
                )

            session_id = new_session_id()
            self._metrics = SessionMetrics(
                session_id=session_id,
                total_records=max(0, safe_int(total_records)),
            )
            self._failures = []
            self._consecutive_failures = 0
            self._last_report = None
            self.sampler.clear()
            self._state = SessionState.ACTIVE

        self.logger.info("session_started", session_id=session_id,
                         total_records=self._metrics.total_records)
        return session_id

    def _require_active(self, operation: str) -> bool:
        if self._state == SessionState.ACTIVE:
            return True
        self.logger.warning("session_not_active", operation=operation,
                            state=self._state.value,
                            session_id=self._metrics.session_id)
        return False

    # ------------------------------------------------------------------
    # Batch outcomes
    # ------------------------------------------------------------------

    def record_batch_success(
        self,
        batch_number: int,
        batch_size: int,
        records_processed: int,
        processing_time_ms: float,
    ) -> None:
        batch_size = safe_int(batch_size)
        processing_time_ms = safe_float(processing_time_ms)

        with self._lock:
            if not self._require_active("record_batch_success"):
                return

            m = self._metrics
            self._consecutive_failures = 0

            m.successful_batches += 1
            m.total_batches += 1
            m.records_succeeded += max(0, safe_int(records_processed))
            m.batch_size_progression.append(batch_size)

            # Incremental mean over n = total_batches (post-increment)
            n = m.total_batches
            m.average_processing_time_ms = (
                m.average_processing_time_ms * (n - 1) + processing_time_ms
            ) / n
            m.average_batch_size = (m.average_batch_size * (n - 1) + batch_size) / n

            self.logger.debug(
                "batch_succeeded",
                session_id=m.session_id,
                batch_number=safe_int(batch_number),
                batch_size=batch_size,
                records_processed=safe_int(records_processed),
                processing_time_ms=round(processing_time_ms, 2),
                average_time_ms=round(m.average_processing_time_ms, 2),
            )

    def record_batch_failure(
        self,
        batch_number: int,
        batch_size: int,
        records_attempted: int,
        error: Any,
        retry_attempt: int = 0,
        processing_time_ms: float = 0.0,
        data_sample: Any = None,
    ) -> Optional[BatchFailureRecord]:
        """
        Record one failed batch attempt and return its BatchFailureRecord.

        Returns None (and records nothing) when no session is active.
        """
        batch_number = safe_int(batch_number)
        batch_size = safe_int(batch_size)
        retry_attempt = max(0, safe_int(retry_attempt))
        processing_time_ms = safe_float(processing_time_ms)

        kind = self.classifier.classify(error)
        try:
            message, code = extract_message_and_code(error)
        except Exception:
            message, code = "", ""
        sample = self.sanitizer.sanitize(data_sample) if data_sample is not None else None
        memory_mb = self.sampler.read_memory_mb()

        with self._lock:
            if not self._require_active("record_batch_failure"):
                return None

            m = self._metrics
            self._consecutive_failures += 1

            denominator = m.total_records or 1
            progress = round_half_up(((batch_number - 1) * batch_size / denominator) * 100)
            progress = min(100, max(0, progress))

            record = BatchFailureRecord(
                batch_id=create_batch_id(m.session_id, batch_number),
                batch_number=batch_number,
                batch_size=batch_size,
                records_attempted=safe_int(records_attempted),
                error_kind=kind,
                error_code=code or None,
                error_message=message or "Unknown error",
                error_stack=_extract_stack(error),
                retry_attempt=retry_attempt,
                processing_time_ms=processing_time_ms,
                memory_usage_mb=memory_mb,
                sample_of_offending_data=sample,
                context_snapshot=ContextSnapshot(
                    total_records_in_session=m.total_records,
                    progress_percent=progress,
                    consecutive_failures_at_time_of_error=self._consecutive_failures,
                ),
            )
            self._failures.append(record)

            m.failed_batches += 1
            m.total_batches += 1
            m.total_retries += retry_attempt
            m.add_kind(kind)

            threshold = self.config.analysis.contention_consecutive_failures
            if (self._consecutive_failures >= threshold
                    and kind == ErrorKind.TIMEOUT
                    and not m.resource_contention_detected):
                m.resource_contention_detected = True
                self.logger.warning(
                    "resource_contention_detected",
                    session_id=m.session_id,
                    batch_number=batch_number,
                    consecutive_failures=self._consecutive_failures,
                )

            entry = BatchFailureLogEntry.build(
                session_id=m.session_id,
                batch_number=batch_number,
                batch_size=batch_size,
                error_kind=kind.value,
                retry_attempt=retry_attempt,
                processing_time_ms=processing_time_ms,
                consecutive_failures=self._consecutive_failures,
                error_message=record.error_message,
                data_sample=record.sample_of_offending_data,
            )
            try:
                self.logger.warning("batch_failed", **entry)
            except Exception:
                # Sample did not render as JSON; the record is kept either way
                entry["data_sample"] = self.config.sanitizer.redaction_marker
                self.logger.warning("batch_failed", **entry)
            return record

    def sample_resources(self) -> Optional[ResourceSnapshot]:
        """
        Take a resource snapshot into the ring buffer. Never raises.

        Returns None (and takes nothing) when no session is active.
        """
        with self._lock:
            if not self._require_active("sample_resources"):
                return None
        return self.sampler.sample()

    # ------------------------------------------------------------------
    # Finalize
    # ------------------------------------------------------------------

    def _coerce_status(self, status: Union[SessionStatus, str]) -> SessionStatus:
        try:
            return SessionStatus(status)
        except ValueError:
            self.logger.warning("invalid_session_status", status=str(status),
                                using=SessionStatus.FAILED.value)
            return SessionStatus.FAILED

    def _build_report(self, status: SessionStatus, analysis: ErrorAnalysis) -> SessionReport:
        cap = max(0, self.config.report.max_detailed_errors)
        return SessionReport(
            session_id=self._metrics.session_id,
            status=status,
            metrics=self._metrics.copy(),
            error_analysis=analysis,
            detailed_errors=list(self._failures[:cap]),
            total_errors=len(self._failures),
        )

    def _errors_payload(self, report: SessionReport, with_samples: bool = True) -> Dict[str, Any]:
        m = report.metrics
        detailed = [r.to_dict() for r in report.detailed_errors]
        if not with_samples:
            for d in detailed:
                if d.get("sample_of_offending_data") is not None:
                    d["sample_of_offending_data"] = self.config.sanitizer.redaction_marker
        return {
            "enhanced_diagnostics": True,
            "session_id": report.session_id,
            "total_errors": report.total_errors,
            "error_breakdown": m.error_breakdown(),
            "performance_metrics": m.to_dict(),
            "error_analysis": report.error_analysis.to_dict(),
            "detailed_errors": detailed,
        }

    def _build_log_record(self, report: SessionReport) -> LogRecord:
        m = report.metrics
        errors_json = None
        if report.total_errors > 0:
            try:
                errors_json = json.dumps([self._errors_payload(report)], default=str)
            except Exception as e:
                # Samples are the only caller-supplied values in the payload
                self.error_logger.error(
                    "errors_json_fallback",
                    session_id=report.session_id,
                    error_type=type(e).__name__,
                    message=str(e),
                )
                errors_json = json.dumps(
                    [self._errors_payload(report, with_samples=False)], default=str
                )

        return LogRecord(
            session_type=self.config.report.session_type,
            status=report.status.value,
            records_processed=m.total_records,
            records_inserted=m.records_succeeded,
            records_updated=0,
            errors_json=errors_json,
            duration_ms=m.duration_ms,
            actor_id=self.actor_id,
        )

    def _persist(self, record: LogRecord, session_id: str) -> bool:
        if self.store is None:
            self.logger.info("persist_skipped", session_id=session_id,
                             reason="no log store configured")
            return False
        try:
            self.store.append_log_record(record)
            return True
        except PersistError as e:
            self.error_logger.error("persist_failed", session_id=session_id, **e.to_dict())
        except Exception as e:
            # A diagnostics write must never fail the import it describes
            self.error_logger.error(
                "persist_failed",
                session_id=session_id,
                error_type=type(e).__name__,
                message=str(e),
            )
        return False

    def finalize_session(self, status: Union[SessionStatus, str]) -> SessionReport:
        """
        End the session, analyze its failures, persist one report row,
        and return the SessionReport. Never raises.
        """
        status = self._coerce_status(status)

        with self._lock:
            if self._state == SessionState.FINALIZED and self._last_report is not None:
                self._require_active("finalize_session")
                return self._last_report
            if self._state != SessionState.ACTIVE:
                self._require_active("finalize_session")
                analysis = self.analyzer.analyze(self._failures, self._metrics)
                return self._build_report(status, analysis)

            m = self._metrics
            m.end_time = utc_now()
            m.peak_memory_usage_mb = self.sampler.peak()
            for kind in ErrorKind:
                m.set_kind(kind, sum(1 for f in self._failures if f.error_kind == kind))

            analysis = self.analyzer.analyze(self._failures, m)
            report = self._build_report(status, analysis)
            record = self._build_log_record(report)
            self._state = SessionState.FINALIZED
            self._last_report = report

        report.persisted = self._persist(record, report.session_id)

        self.logger.info(
            "session_finalized",
            **SessionLogEntry.build(
                session_id=report.session_id,
                status=status.value,
                total_batches=report.metrics.total_batches,
                failed_batches=report.metrics.failed_batches,
                duration_ms=report.metrics.duration_ms,
                persisted=report.persisted,
                recommended_actions=analysis.recommended_actions,
            ),
        )
        return report
