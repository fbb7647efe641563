# ===========================================================================
# BulkDiag -- TYPED EXCEPTIONS
# ===========================================================================
# FILE: bulkdiag/core/exceptions.py
#
# WHAT THIS IS:
#   The engine's own error types. These are NOT the errors of the upload
#   being diagnosed (those are classified into ErrorKind values and never
#   raised); these describe the engine failing at its own job.
#
# HOW IT'S USED:
#   A log store raises PersistError when it cannot write a report:
#     try:
#         store.append_log_record(record)
#     except PersistError as e:
#         error_log.error("persist_failed", **e.to_dict())
#
#   load_config(strict=True) raises ConfigError when validation fails.
#
# HIERARCHY:
#   BulkDiagError
#     +-- ConfigError      (CONF-xxx)
#     +-- PersistError     (PERSIST-xxx)
# ===========================================================================

from __future__ import annotations


class BulkDiagError(Exception):
    """
    Base class for all BulkDiag errors.

    Attributes:
        fix_suggestion (str | None): Human-readable fix instruction.
        error_code (str | None): Machine-readable code like "PERSIST-001".
    """

    def __init__(self, message, fix_suggestion=None, error_code=None):
        self.fix_suggestion = fix_suggestion
        self.error_code = error_code
        super().__init__(message)

    def to_dict(self):
        """Convert to dictionary for JSON logging."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": str(self),
            "fix_suggestion": self.fix_suggestion,
        }


# ---------------------------------------------------------------------------
# CONFIGURATION ERRORS (CONF-xxx)
# ---------------------------------------------------------------------------

class ConfigError(BulkDiagError):
    """
    Configuration failed validation.

    WHEN YOU'LL SEE THIS:
      - load_config(strict=True) with a negative ring capacity or threshold
      - A YAML file with a wrong type for a numeric setting
    """
    def __init__(self, message=None, problems=None):
        self.problems = list(problems or [])
        super().__init__(
            message or "Configuration is invalid: " + "; ".join(self.problems),
            fix_suggestion="Compare config/default_config.yaml with the defaults in bulkdiag/core/config.py.",
            error_code="CONF-001",
        )


# ---------------------------------------------------------------------------
# PERSISTENCE ERRORS (PERSIST-xxx)
# ---------------------------------------------------------------------------

class PersistError(BulkDiagError):
    """
    The log store refused or failed to write a session report.

    WHEN YOU'LL SEE THIS:
      - SQLite database locked for longer than busy_timeout
      - Database directory missing or read-only
      - A custom store rejecting the record

    The session catches this at finalize time; it never reaches the
    upload driver.
    """
    def __init__(self, message=None, cause=None):
        self.cause = cause
        super().__init__(
            message or "Failed to persist diagnostics report.",
            fix_suggestion="Check that the diagnostics database path exists and is writable.",
            error_code="PERSIST-001",
        )

    def to_dict(self):
        d = super().to_dict()
        if self.cause is not None:
            d["cause"] = f"{type(self.cause).__name__}: {self.cause}"
        return d
