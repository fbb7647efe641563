# ============================================================================
# conftest.py -- Shared Test Fixtures for the BulkDiag Test Suite
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Pytest automatically loads this file before any test runs.
#   It provides:
#     1. sys.path setup so "from bulkdiag.core.X import Y" works uninstalled
#     2. Log isolation: every test writes its log files under tmp_path
#     3. Fake collaborators: a scripted resource probe, a failing log store,
#        and error objects shaped like the ones upload drivers catch
#
# INTERNET ACCESS: NONE
# ============================================================================

import sys
import logging
from pathlib import Path
from typing import List, Optional

import pytest

# -- sys.path setup --
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from bulkdiag.core.exceptions import PersistError
from bulkdiag.monitoring import logger as logger_module
from bulkdiag.monitoring.log_store import LogStore
from bulkdiag.monitoring.resources import ResourceProbe


# ============================================================================
# SECTION 0: LOG ISOLATION
# ============================================================================

_LOGGER_NAMES = ("bulkdiag.session", "bulkdiag.errors")


@pytest.fixture(autouse=True)
def isolated_logs(tmp_path, monkeypatch):
    """Point the logging singleton at tmp_path and drop handlers afterwards."""
    setup = logger_module.LoggerSetup(str(tmp_path / "logs"))
    monkeypatch.setattr(logger_module, "_logger_setup", setup)
    yield tmp_path / "logs"
    for name in _LOGGER_NAMES:
        py_logger = logging.getLogger(name)
        for handler in list(py_logger.handlers):
            py_logger.removeHandler(handler)
            handler.close()


# ============================================================================
# SECTION 1: FAKE COLLABORATORS
# ============================================================================

class FakeProbe(ResourceProbe):
    """
    Resource probe that replays a scripted list of memory readings.

    After the script runs out it keeps returning the last value.
    """

    def __init__(self, memory_mb: Optional[List[float]] = None,
                 pool_usage: float = 0.25, active: int = 3, cpu: float = 12.5):
        self._memory = list(memory_mb or [0.0])
        self._i = 0
        self.pool_usage = pool_usage
        self.active = active
        self.cpu = cpu

    def memory_usage_mb(self) -> float:
        value = self._memory[min(self._i, len(self._memory) - 1)]
        self._i += 1
        return value

    def connection_pool_usage(self) -> float:
        return self.pool_usage

    def active_connections(self) -> int:
        return self.active

    def cpu_load(self) -> Optional[float]:
        return self.cpu


class BrokenProbe(ResourceProbe):
    """Every reading raises -- the sampler must still return zeros."""

    def memory_usage_mb(self) -> float:
        raise RuntimeError("probe exploded")

    def connection_pool_usage(self) -> float:
        raise RuntimeError("probe exploded")

    def active_connections(self) -> int:
        raise RuntimeError("probe exploded")

    def cpu_load(self):
        raise RuntimeError("probe exploded")


class GarbageProbe(ResourceProbe):
    """Every reading returns something that is not a number."""

    def memory_usage_mb(self):
        return "n/a"

    def connection_pool_usage(self):
        return "full"

    def active_connections(self):
        return object()

    def cpu_load(self):
        return "high"


class FailingStore(LogStore):
    """Log store that always fails, the way a locked database would."""

    def __init__(self, exc: Optional[Exception] = None):
        self.exc = exc or PersistError("database is locked")
        self.calls = 0

    def append_log_record(self, record) -> None:
        self.calls += 1
        raise self.exc


class PostgrestError(Exception):
    """Shape of the error objects a PostgREST client raises."""

    def __init__(self, message, code=None):
        super().__init__(message)
        self.message = message
        self.code = code


@pytest.fixture
def fake_probe():
    return FakeProbe()
