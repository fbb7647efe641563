# ============================================================================
# test_patterns.py -- Tests for PatternAnalyzer
# ============================================================================
#
# COVERS:
#   TestPatternAnalyzer -- thresholds, cluster points, recommendations
#
# RUN:
#   python -m pytest tests/test_patterns.py -v
#
# INTERNET ACCESS: NONE
# ============================================================================

from bulkdiag.core.config import AnalysisConfig
from bulkdiag.core.models import (
    BatchFailureRecord,
    ContextSnapshot,
    ErrorKind,
    SessionMetrics,
)
from bulkdiag.core.patterns import (
    RECOMMEND_DEDUPLICATION,
    RECOMMEND_POOL_TUNING,
    RECOMMEND_SMALLER_BATCHES,
    RECOMMEND_STREAMING,
    PatternAnalyzer,
)


def make_failure(kind, progress, memory_mb=None, n=1):
    return BatchFailureRecord(
        batch_id=f"s_batch_{n}",
        batch_number=n,
        batch_size=100,
        records_attempted=100,
        error_kind=kind,
        error_message="x",
        retry_attempt=0,
        processing_time_ms=10.0,
        memory_usage_mb=memory_mb,
        context_snapshot=ContextSnapshot(
            total_records_in_session=1000,
            progress_percent=progress,
            consecutive_failures_at_time_of_error=1,
        ),
    )


def metrics(contention=False):
    m = SessionMetrics(session_id="s", total_records=1000)
    m.resource_contention_detected = contention
    return m


class TestPatternAnalyzer:

    def test_empty_log(self):
        analysis = PatternAnalyzer().analyze([], metrics())
        assert analysis.timeout_clusters == []
        assert analysis.constraint_hotspots == []
        assert analysis.memory_pressure_points == []
        assert analysis.recommended_actions == []

    def test_five_timeouts_is_not_a_cluster(self):
        failures = [make_failure(ErrorKind.TIMEOUT, p) for p in range(5)]
        analysis = PatternAnalyzer().analyze(failures, metrics())
        assert RECOMMEND_SMALLER_BATCHES not in analysis.recommended_actions
        assert analysis.timeout_clusters == []

    def test_six_timeouts_cluster(self):
        points = [10, 20, 30, 40, 50, 60]
        failures = [make_failure(ErrorKind.TIMEOUT, p) for p in points]
        analysis = PatternAnalyzer().analyze(failures, metrics())
        assert analysis.recommended_actions == [RECOMMEND_SMALLER_BATCHES]
        assert analysis.timeout_clusters == points

    def test_constraint_hotspots(self):
        three = [make_failure(ErrorKind.CONSTRAINT, p) for p in (1, 2, 3)]
        assert PatternAnalyzer().analyze(three, metrics()).constraint_hotspots == []

        four = three + [make_failure(ErrorKind.CONSTRAINT, 4)]
        analysis = PatternAnalyzer().analyze(four, metrics())
        assert analysis.constraint_hotspots == [1, 2, 3, 4]
        assert RECOMMEND_DEDUPLICATION in analysis.recommended_actions

    def test_single_memory_failure(self):
        analysis = PatternAnalyzer().analyze([make_failure(ErrorKind.MEMORY, 42)], metrics())
        assert analysis.memory_pressure_points == [42]
        assert analysis.recommended_actions == [RECOMMEND_STREAMING]

    def test_high_memory_on_other_kind(self):
        failures = [
            make_failure(ErrorKind.NETWORK, 10, memory_mb=501.0),
            make_failure(ErrorKind.NETWORK, 20, memory_mb=500.0),
            make_failure(ErrorKind.NETWORK, 30, memory_mb=None),
        ]
        analysis = PatternAnalyzer().analyze(failures, metrics())
        assert analysis.memory_pressure_points == [10]

    def test_contention_flag(self):
        analysis = PatternAnalyzer().analyze([], metrics(contention=True))
        assert analysis.recommended_actions == [RECOMMEND_POOL_TUNING]

    def test_all_rules_no_duplicates(self):
        failures = (
            [make_failure(ErrorKind.TIMEOUT, p) for p in range(6)]
            + [make_failure(ErrorKind.CONSTRAINT, p) for p in range(4)]
            + [make_failure(ErrorKind.MEMORY, 99, memory_mb=900.0)]
        )
        analysis = PatternAnalyzer().analyze(failures, metrics(contention=True))
        assert analysis.recommended_actions == [
            RECOMMEND_SMALLER_BATCHES,
            RECOMMEND_DEDUPLICATION,
            RECOMMEND_STREAMING,
            RECOMMEND_POOL_TUNING,
        ]
        assert len(set(analysis.recommended_actions)) == 4

    def test_custom_thresholds(self):
        cfg = AnalysisConfig(timeout_cluster_threshold=1, memory_pressure_mb=100.0)
        failures = [
            make_failure(ErrorKind.TIMEOUT, 5),
            make_failure(ErrorKind.TIMEOUT, 6, memory_mb=150.0),
        ]
        analysis = PatternAnalyzer(cfg).analyze(failures, metrics())
        assert analysis.timeout_clusters == [5, 6]
        assert analysis.memory_pressure_points == [6]

    def test_deterministic(self):
        failures = [make_failure(ErrorKind.TIMEOUT, p) for p in range(8)]
        a = PatternAnalyzer().analyze(failures, metrics(True))
        b = PatternAnalyzer().analyze(failures, metrics(True))
        assert a == b
