# ============================================================================
# BulkDiag -- Error Classifier (bulkdiag/core/classifier.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Turns whatever the upload driver caught (a PostgREST error dict, a
#   psycopg exception, a plain string, None) into exactly one ErrorKind.
#
# HOW IT WORKS:
#   1. Pull a message and a code out of the error, tolerating any shape
#   2. Lower-case both
#   3. Walk the rules in order -- the FIRST match wins
#   4. Nothing matched -> ErrorKind.UNKNOWN
#
# ORDER MATTERS:
#   "connection timeout" contains both a timeout phrase and a network
#   phrase. Timeout rules run first, so it is a timeout.
#
#   timeout > constraint > network > memory > validation > unknown
#
# POSTGRES / POSTGREST CODES USED:
#   PGRST301, PGRST408, 57014  statement or request timed out
#   23505 unique_violation     23503 foreign_key_violation
#   22xxx data_exception       23502 not_null_violation
#   23001 restrict_violation
# ============================================================================

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Callable, List, Tuple

from bulkdiag.core.models import ErrorKind


TIMEOUT_PHRASES = (
    "timeout", "timed out", "time out", "request timeout",
    "connection timeout", "statement timeout",
)
TIMEOUT_CODES = frozenset({"pgrst301", "pgrst408", "57014", "408", "504"})

CONSTRAINT_PHRASES = (
    "duplicate key", "unique constraint", "already exists", "violates",
    "foreign key",
)
CONSTRAINT_CODES = frozenset({"23505", "23503"})

NETWORK_PHRASES = ("network", "connection", "refused", "unreachable", "dns")
NETWORK_CODE_FRAGMENTS = ("net", "conn")

MEMORY_PHRASES = ("memory", "out of memory", "heap", "allocation")
MEMORY_CODE_FRAGMENTS = ("mem",)

VALIDATION_PHRASES = (
    "invalid", "validation", "not null", "check constraint", "data type",
)
VALIDATION_CODE_PREFIXES = ("22",)
VALIDATION_CODES = frozenset({"23502", "23001"})


def _has_any(text: str, needles) -> bool:
    return any(n in text for n in needles)


def _to_text(value: Any) -> str:
    """str() that never raises. None becomes ''."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    try:
        return str(value)
    except Exception:
        return ""


def _safe_get(error: Any, name: str) -> Any:
    try:
        if isinstance(error, Mapping):
            return error.get(name)
        return getattr(error, name, None)
    except Exception:
        return None


def extract_message_and_code(error: Any, with_type_name: bool = False) -> Tuple[str, str]:
    """
    Return (message, code) for any error-like value, original case.

    Accepts mappings with "message"/"code" keys, objects with .message /
    .code (or psycopg's .pgcode), exceptions, and plain strings.
    with_type_name appends an exception's type name to the message, so a
    bare MemoryError() or TimeoutError() still carries a useful word.
    """
    if error is None:
        return "", ""
    if isinstance(error, str):
        return error, ""

    message = _to_text(_safe_get(error, "message"))
    if not message and isinstance(error, BaseException):
        message = _to_text(error)

    code = _safe_get(error, "code")
    if code is None and not isinstance(error, Mapping):
        code = _safe_get(error, "pgcode")
    code_text = _to_text(code)

    if with_type_name and isinstance(error, BaseException):
        message = (message + " " + type(error).__name__).strip()

    return message, code_text


class ErrorClassifier:
    """
    Classifies raw batch errors into ErrorKind values.

    Usage:
        kind = ErrorClassifier.classify({"message": "statement timeout"})
        # ErrorKind.TIMEOUT

    classify() is pure and never raises.
    """

    # Rules: (check_function(message, code), kind). First match wins.
    CLASSIFICATION_RULES: List[Tuple[Callable[[str, str], bool], ErrorKind]] = []

    @classmethod
    def _init_rules(cls) -> None:
        """Build the rule table on first use."""
        if cls.CLASSIFICATION_RULES:
            return

        cls.CLASSIFICATION_RULES = [
            (
                lambda m, c: _has_any(m, TIMEOUT_PHRASES)
                or "timeout" in c or c in TIMEOUT_CODES,
                ErrorKind.TIMEOUT,
            ),
            (
                lambda m, c: _has_any(m, CONSTRAINT_PHRASES)
                or c in CONSTRAINT_CODES,
                ErrorKind.CONSTRAINT,
            ),
            (
                lambda m, c: _has_any(m, NETWORK_PHRASES)
                or _has_any(c, NETWORK_CODE_FRAGMENTS),
                ErrorKind.NETWORK,
            ),
            (
                lambda m, c: _has_any(m, MEMORY_PHRASES)
                or _has_any(c, MEMORY_CODE_FRAGMENTS),
                ErrorKind.MEMORY,
            ),
            (
                lambda m, c: _has_any(m, VALIDATION_PHRASES)
                or c.startswith(VALIDATION_CODE_PREFIXES)
                or c in VALIDATION_CODES,
                ErrorKind.VALIDATION,
            ),
        ]

    @classmethod
    def classify(cls, error: Any) -> ErrorKind:
        """
        Classify one error.

        Args:
            error: Anything the upload driver caught. None and {} are fine.

        Returns:
            The ErrorKind of the first matching rule, or UNKNOWN.
        """
        cls._init_rules()

        try:
            message, code = extract_message_and_code(error, with_type_name=True)
        except Exception:
            return ErrorKind.UNKNOWN

        message = message.lower()
        code = code.strip().lower()

        for check_fn, kind in cls.CLASSIFICATION_RULES:
            try:
                if check_fn(message, code):
                    return kind
            except Exception:
                # A broken rule should never crash the classifier
                continue

        return ErrorKind.UNKNOWN


def classify_error(error: Any) -> ErrorKind:
    """Module-level shortcut for ErrorClassifier.classify()."""
    return ErrorClassifier.classify(error)
