# ============================================================================
# BulkDiag -- Pattern Analyzer (bulkdiag/core/patterns.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Reads a finished session's failure log and answers: where in the
#   upload did failures bunch up, and what should change next time?
#
# RULES (thresholds from AnalysisConfig):
#   - more than 5 timeouts        -> timeout_clusters + smaller batches tip
#   - more than 3 constraint hits -> constraint_hotspots + dedup tip
#   - any memory failure, or any
#     failure above 500 MB        -> memory_pressure_points + streaming tip
#   - resource contention flag    -> pool tuning / circuit breaker tip
#
#   A cluster point is the progress percent (0-100) recorded with the
#   failure. Output depends only on the inputs.
# ============================================================================

from __future__ import annotations

from typing import List, Optional, Sequence

from bulkdiag.core.config import AnalysisConfig
from bulkdiag.core.models import (
    BatchFailureRecord,
    ErrorAnalysis,
    ErrorKind,
    SessionMetrics,
)


RECOMMEND_SMALLER_BATCHES = "Reduce batch size in timeout-prone sections of the upload"
RECOMMEND_DEDUPLICATION = "Review data deduplication strategy and unique constraints"
RECOMMEND_STREAMING = "Stream records instead of loading them in bulk to reduce memory footprint"
RECOMMEND_POOL_TUNING = "Tune the connection pool and add a circuit breaker around batch writes"


def _progress_points(records: Sequence[BatchFailureRecord]) -> List[int]:
    return [r.context_snapshot.progress_percent for r in records]


class PatternAnalyzer:
    """
    Detects failure clustering and resource contention.

    Usage:
        analysis = PatternAnalyzer().analyze(failures, metrics)
        for tip in analysis.recommended_actions:
            print(tip)
    """

    def __init__(self, config: Optional[AnalysisConfig] = None):
        self.config = config or AnalysisConfig()

    def _is_memory_pressure(self, record: BatchFailureRecord) -> bool:
        if record.error_kind == ErrorKind.MEMORY:
            return True
        mem = record.memory_usage_mb
        return mem is not None and mem > self.config.memory_pressure_mb

    def analyze(
        self,
        failures: Sequence[BatchFailureRecord],
        metrics: SessionMetrics,
    ) -> ErrorAnalysis:
        cfg = self.config
        analysis = ErrorAnalysis()
        actions: List[str] = []

        timeouts = [f for f in failures if f.error_kind == ErrorKind.TIMEOUT]
        if len(timeouts) > cfg.timeout_cluster_threshold:
            actions.append(RECOMMEND_SMALLER_BATCHES)
            analysis.timeout_clusters = _progress_points(timeouts)

        constraints = [f for f in failures if f.error_kind == ErrorKind.CONSTRAINT]
        if len(constraints) > cfg.constraint_hotspot_threshold:
            actions.append(RECOMMEND_DEDUPLICATION)
            analysis.constraint_hotspots = _progress_points(constraints)

        pressure = [f for f in failures if self._is_memory_pressure(f)]
        if pressure:
            actions.append(RECOMMEND_STREAMING)
            analysis.memory_pressure_points = _progress_points(pressure)

        if metrics.resource_contention_detected:
            actions.append(RECOMMEND_POOL_TUNING)

        # dict.fromkeys keeps first-seen order
        analysis.recommended_actions = list(dict.fromkeys(actions))
        return analysis
