# ============================================================================
# BulkDiag -- Resource Sampler (bulkdiag/monitoring/resources.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Takes point-in-time readings of process resources (memory, connection
#   pool usage, CPU) during an upload and keeps the most recent ones in a
#   ring buffer.
#
#   Two parts:
#
#     1. RESOURCE PROBES:
#        Where the numbers come from. ResourceProbe returns zeros (works
#        everywhere, measures nothing). PsutilResourceProbe reads the real
#        process RSS and CPU via psutil, and pool stats from a callback the
#        host supplies (the engine has no idea what pool you use).
#
#     2. RESOURCE SAMPLER:
#        A deque(maxlen=100). New snapshots push the oldest out, so a
#        week-long upload sampled every second still uses a few KB.
#        The peak is tracked separately, so an evicted spike still counts.
#
# THREAD SAFETY:
#   sample(), peak(), snapshots() and clear() share one lock.
# ============================================================================

from __future__ import annotations

import os
import threading
from collections import deque
from typing import Callable, List, Optional, Tuple

import psutil

from bulkdiag.core.models import ResourceSnapshot


# ============================================================================
# SECTION 1: RESOURCE PROBES
# ============================================================================

class ResourceProbe:
    """
    Capability interface for resource readings.

    The base class is the no-op default: every reading is zero (or None
    for CPU). Subclasses override whichever readings they can provide.
    Implementations must not raise; return 0 when a reading fails.
    """

    def memory_usage_mb(self) -> float:
        return 0.0

    def connection_pool_usage(self) -> float:
        return 0.0

    def active_connections(self) -> int:
        return 0

    def cpu_load(self) -> Optional[float]:
        return None


# Host callback returning (pool_usage_fraction, active_connections)
PoolStatsFn = Callable[[], Tuple[float, int]]


class PsutilResourceProbe(ResourceProbe):
    """
    Reads this process's memory and CPU through psutil.

    Args:
        pool_stats: Optional callback returning (pool usage 0..1,
                    active connections). Called on every sample.
        pid:        Process to watch (default: this one).
    """

    def __init__(self, pool_stats: Optional[PoolStatsFn] = None,
                 pid: Optional[int] = None):
        self._pool_stats = pool_stats
        try:
            self._process = psutil.Process(pid or os.getpid())
        except (psutil.Error, OSError):
            self._process = None

    def memory_usage_mb(self) -> float:
        """RSS (physical RAM in use) in MB, rounded to 0.1."""
        if self._process is None:
            return 0.0
        try:
            return round(self._process.memory_info().rss / (1024 * 1024), 1)
        except (psutil.Error, OSError):
            return 0.0

    def cpu_load(self) -> Optional[float]:
        """CPU percent since the previous call (first call reports 0.0)."""
        if self._process is None:
            return None
        try:
            return self._process.cpu_percent(interval=None)
        except (psutil.Error, OSError):
            return None

    def _read_pool(self) -> Tuple[float, int]:
        if self._pool_stats is None:
            return 0.0, 0
        try:
            usage, active = self._pool_stats()
            return float(usage), int(active)
        except Exception:
            return 0.0, 0

    def connection_pool_usage(self) -> float:
        return self._read_pool()[0]

    def active_connections(self) -> int:
        return self._read_pool()[1]


# ============================================================================
# SECTION 2: RESOURCE SAMPLER
# ============================================================================

class ResourceSampler:
    """
    Bounded ring buffer of ResourceSnapshot readings.

    Usage:
        sampler = ResourceSampler(PsutilResourceProbe(), capacity=100)
        snap = sampler.sample()
        print(sampler.peak())        # highest memory_usage_mb so far
        recent = sampler.snapshots() # oldest first, at most 100
    """

    def __init__(self, probe: Optional[ResourceProbe] = None,
                 capacity: int = 100):
        self.probe = probe or ResourceProbe()
        self.capacity = max(1, int(capacity))
        self._buffer: deque = deque(maxlen=self.capacity)
        self._lock = threading.Lock()
        self._peak_mb = 0.0
        self._sample_count = 0

    def _read(self, fn, convert, default):
        """fn() passed through convert(); default if either step fails."""
        try:
            value = fn()
            return convert(value) if value is not None else default
        except Exception:
            return default

    def read_memory_mb(self) -> float:
        """One memory reading without recording a snapshot."""
        return self._read(self.probe.memory_usage_mb, float, 0.0)

    def sample(self) -> ResourceSnapshot:
        """Take a reading, store it, and return it. Never raises."""
        snapshot = ResourceSnapshot(
            memory_usage_mb=self.read_memory_mb(),
            connection_pool_usage=self._read(self.probe.connection_pool_usage, float, 0.0),
            active_connections=self._read(self.probe.active_connections, int, 0),
            cpu_load=self._read(self.probe.cpu_load, float, None),
        )

        with self._lock:
            self._buffer.append(snapshot)
            self._sample_count += 1
            if snapshot.memory_usage_mb > self._peak_mb:
                self._peak_mb = snapshot.memory_usage_mb

        return snapshot

    def peak(self) -> float:
        """Highest memory_usage_mb seen since the last clear(); 0.0 if none."""
        with self._lock:
            return self._peak_mb

    def snapshots(self) -> List[ResourceSnapshot]:
        """Retained snapshots, oldest first."""
        with self._lock:
            return list(self._buffer)

    def clear(self) -> None:
        with self._lock:
            self._buffer.clear()
            self._peak_mb = 0.0
            self._sample_count = 0

    @property
    def size(self) -> int:
        """Number of snapshots currently retained."""
        with self._lock:
            return len(self._buffer)

    @property
    def total_samples(self) -> int:
        """Samples taken since the last clear(), including evicted ones."""
        with self._lock:
            return self._sample_count
