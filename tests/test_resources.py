# ============================================================================
# test_resources.py -- Tests for ResourceSampler and probes
# ============================================================================
#
# COVERS:
#   TestResourceSampler  -- ring buffer bound, order, peak tracking
#   TestProbes           -- default zero probe, broken probe, psutil probe
#
# RUN:
#   python -m pytest tests/test_resources.py -v
#
# INTERNET ACCESS: NONE
# ============================================================================

import threading
from unittest.mock import MagicMock, patch

import psutil
import sys as _sys, os as _os
_sys.path.insert(0, _os.path.dirname(__file__))
from conftest import FakeProbe, BrokenProbe, GarbageProbe

from bulkdiag.monitoring.resources import (
    PsutilResourceProbe,
    ResourceProbe,
    ResourceSampler,
)


class TestResourceSampler:

    def test_ring_buffer_keeps_most_recent_100(self):
        probe = FakeProbe(memory_mb=[float(i) for i in range(150)])
        sampler = ResourceSampler(probe, capacity=100)
        for _ in range(150):
            sampler.sample()

        kept = sampler.snapshots()
        assert len(kept) == 100
        assert sampler.size == 100
        assert [s.memory_usage_mb for s in kept] == [float(i) for i in range(50, 150)]
        assert sampler.total_samples == 150

    def test_peak_survives_eviction(self):
        probe = FakeProbe(memory_mb=[900.0, 10.0, 10.0, 10.0])
        sampler = ResourceSampler(probe, capacity=2)
        for _ in range(4):
            sampler.sample()
        assert all(s.memory_usage_mb == 10.0 for s in sampler.snapshots())
        assert sampler.peak() == 900.0

    def test_peak_zero_when_empty(self):
        assert ResourceSampler().peak() == 0.0

    def test_clear_resets(self):
        sampler = ResourceSampler(FakeProbe(memory_mb=[50.0]))
        sampler.sample()
        sampler.clear()
        assert sampler.size == 0
        assert sampler.peak() == 0.0

    def test_snapshot_fields(self):
        sampler = ResourceSampler(FakeProbe(memory_mb=[123.4], pool_usage=0.5, active=7, cpu=33.0))
        snap = sampler.sample()
        assert snap.memory_usage_mb == 123.4
        assert snap.connection_pool_usage == 0.5
        assert snap.active_connections == 7
        assert snap.cpu_load == 33.0
        assert snap.timestamp is not None

    def test_concurrent_sampling_stays_bounded(self):
        sampler = ResourceSampler(FakeProbe(memory_mb=[1.0]), capacity=100)

        def worker():
            for _ in range(100):
                sampler.sample()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sampler.size == 100
        assert sampler.total_samples == 800


class TestProbes:

    def test_default_probe_is_zero(self):
        snap = ResourceSampler(ResourceProbe()).sample()
        assert snap.memory_usage_mb == 0.0
        assert snap.connection_pool_usage == 0.0
        assert snap.active_connections == 0
        assert snap.cpu_load is None

    def test_broken_probe_never_raises(self):
        snap = ResourceSampler(BrokenProbe()).sample()
        assert snap.memory_usage_mb == 0.0
        assert snap.active_connections == 0
        assert snap.cpu_load is None

    def test_non_numeric_readings_become_defaults(self):
        sampler = ResourceSampler(GarbageProbe())
        snap = sampler.sample()
        assert snap.memory_usage_mb == 0.0
        assert snap.connection_pool_usage == 0.0
        assert snap.active_connections == 0
        assert snap.cpu_load is None
        assert sampler.read_memory_mb() == 0.0
        assert sampler.size == 1

    def test_numeric_strings_are_converted(self):
        snap = ResourceSampler(FakeProbe(memory_mb=["256.5"], active="4")).sample()
        assert snap.memory_usage_mb == 256.5
        assert snap.active_connections == 4

    def test_psutil_probe_reads_this_process(self):
        probe = PsutilResourceProbe()
        assert probe.memory_usage_mb() > 0.0
        assert probe.cpu_load() is not None

    def test_psutil_probe_pool_callback(self):
        probe = PsutilResourceProbe(pool_stats=lambda: (0.8, 12))
        assert probe.connection_pool_usage() == 0.8
        assert probe.active_connections() == 12

    def test_psutil_probe_pool_callback_failure(self):
        def broken():
            raise RuntimeError("pool gone")
        probe = PsutilResourceProbe(pool_stats=broken)
        assert probe.connection_pool_usage() == 0.0
        assert probe.active_connections() == 0

    def test_psutil_error_returns_zero(self):
        probe = PsutilResourceProbe()
        fake_process = MagicMock()
        fake_process.memory_info.side_effect = psutil.AccessDenied()
        fake_process.cpu_percent.side_effect = psutil.NoSuchProcess(pid=1)
        probe._process = fake_process
        assert probe.memory_usage_mb() == 0.0
        assert probe.cpu_load() is None

    def test_missing_process(self):
        with patch("bulkdiag.monitoring.resources.psutil.Process",
                   side_effect=psutil.NoSuchProcess(pid=999999)):
            probe = PsutilResourceProbe(pid=999999)
        assert probe.memory_usage_mb() == 0.0
        assert probe.cpu_load() is None
