# ============================================================================
# BulkDiag -- Data Sample Sanitizer (bulkdiag/core/sanitizer.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   The upload driver may hand us the rows that broke a batch. Before
#   those rows go anywhere near a log file or the database they are:
#
#     - capped: lists/tuples keep only their first 2 elements
#     - redacted: keys containing password/token/key/secret get "[REDACTED]"
#     - bounded: long strings truncated, deep nesting cut off
#     - de-looped: circular references replaced with "[CIRCULAR]"
#
# WHAT COUNTS AS A ROW:
#   Mappings, and anything that exposes named fields: dataclasses,
#   namedtuples, and plain objects with attributes (ORM rows, pydantic
#   models). Those are turned into dicts first, so their fields go
#   through the same key redaction. Mapping keys that JSON cannot hold
#   (tuples from MultiIndex columns, objects) become strings.
#
#   Scalars, strings, bytes and field-less objects are returned unchanged.
#   Nothing here raises.
# ============================================================================

from __future__ import annotations

import dataclasses
from collections.abc import Mapping
from typing import Any, Dict, Iterable, Optional, Set

from bulkdiag.core.config import SanitizerConfig


CIRCULAR_MARKER = "[CIRCULAR]"
DEPTH_MARKER = "[MAX_DEPTH]"
TRUNCATED_SUFFIX = "...[TRUNCATED]"

_SCALARS = (str, bytes, bytearray, int, float, bool, type(None))
_JSON_KEY_TYPES = (str, int, float, bool, type(None))


def is_sensitive_key(key: Any, sensitive_keys: Iterable[str]) -> bool:
    try:
        k = str(key).lower()
    except Exception:
        return False
    return any(s.lower() in k for s in sensitive_keys)


def _json_key(key: Any) -> Any:
    if isinstance(key, _JSON_KEY_TYPES):
        return key
    try:
        return str(key)
    except Exception:
        return repr(type(key))


def fields_of(value: Any) -> Optional[Dict[str, Any]]:
    """
    Named fields of a row-like object, or None when it has none.

    Handles dataclass instances, namedtuples, and objects with a
    non-empty __dict__. Classes, functions and modules are not rows.
    """
    if isinstance(value, _SCALARS) or isinstance(value, type) or callable(value):
        return None
    if dataclasses.is_dataclass(value):
        return {f.name: getattr(value, f.name) for f in dataclasses.fields(value)}
    if isinstance(value, tuple) and hasattr(value, "_fields"):
        return dict(zip(value._fields, value))
    attrs = getattr(value, "__dict__", None)
    if isinstance(attrs, dict) and attrs:
        return {k: v for k, v in attrs.items() if not str(k).startswith("_")}
    return None


class DataSampleSanitizer:
    """
    Produces a redacted, size-capped copy of an offending-data sample.

    Usage:
        sanitizer = DataSampleSanitizer()
        clean = sanitizer.sanitize([{"sku": "A1", "apiToken": "abc"}, ...])
        # [{"sku": "A1", "apiToken": "[REDACTED]"}, ...]  (2 items max)
    """

    def __init__(self, config: Optional[SanitizerConfig] = None):
        self.config = config or SanitizerConfig()

    def sanitize(self, data: Any) -> Any:
        """Return a safe copy of data. Never raises."""
        try:
            if not isinstance(data, (Mapping, list, tuple)) and fields_of(data) is None:
                return data
            return self._clean(data, depth=0, seen=set())
        except Exception:
            # Unknown container behaviour; store nothing rather than risk a leak
            return self.config.redaction_marker

    def _clean(self, value: Any, depth: int, seen: Set[int]) -> Any:
        cfg = self.config

        if isinstance(value, str):
            if cfg.max_string_chars and len(value) > cfg.max_string_chars:
                return value[:cfg.max_string_chars] + TRUNCATED_SUFFIX
            return value

        row = None
        if not isinstance(value, Mapping):
            row = fields_of(value)
            if row is None and not isinstance(value, (list, tuple)):
                return value

        if id(value) in seen:
            return CIRCULAR_MARKER
        if depth >= cfg.max_depth:
            return DEPTH_MARKER

        seen = seen | {id(value)}

        if row is not None or isinstance(value, Mapping):
            out = {}
            for k, v in (row if row is not None else value).items():
                key = _json_key(k)
                if is_sensitive_key(key, cfg.sensitive_keys):
                    out[key] = cfg.redaction_marker
                else:
                    out[key] = self._clean(v, depth + 1, seen)
            return out

        items = list(value[:cfg.max_items])
        return [self._clean(v, depth + 1, seen) for v in items]


_default = DataSampleSanitizer()


def sanitize_data_sample(data: Any, config: Optional[SanitizerConfig] = None) -> Any:
    """Sanitize with the given config, or the defaults."""
    if config is None:
        return _default.sanitize(data)
    return DataSampleSanitizer(config).sanitize(data)
