# ============================================================================
# BulkDiag -- Configuration (bulkdiag/core/config.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Every tunable number in the diagnostics engine lives here: ring buffer
#   size, pattern thresholds, report caps, redaction rules, file paths.
#
# HOW IT WORKS:
#   1. Python dataclasses define every setting with a default
#   2. A YAML file (config/default_config.yaml) can override those defaults
#   3. Environment variables can override YAML (machine-specific paths)
#
#   Priority: env vars > YAML file > hardcoded defaults
#
# USAGE:
#   from bulkdiag.core.config import load_config
#   config = load_config(".")
#   print(config.analysis.timeout_cluster_threshold)   # 5
#   print(config.sampling.ring_capacity)               # 100
# ============================================================================

from __future__ import annotations

import os
import sys
import yaml
import dataclasses
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from bulkdiag.core.exceptions import ConfigError


# -------------------------------------------------------------------
# Sub-configs: each one maps to a section in the YAML file
# -------------------------------------------------------------------

@dataclass
class PathsConfig:
    """
    Where BulkDiag writes reports and log files.

    BULKDIAG_DATA_DIR fills in the database path when YAML leaves it
    empty; BULKDIAG_LOG_DIR always wins for the log directory.
    """
    database: str = ""             # Full path to bulkdiag.sqlite3
    log_dir: str = "logs"          # Folder for app_/error_ log files

    def __post_init__(self) -> None:
        data_dir = os.getenv("BULKDIAG_DATA_DIR")
        if data_dir and not self.database:
            self.database = os.path.join(data_dir, "bulkdiag.sqlite3")

        log_env = os.getenv("BULKDIAG_LOG_DIR")
        if log_env:
            self.log_dir = log_env

        if self.database:
            self.database = os.path.normpath(os.path.expandvars(self.database))
        if self.log_dir:
            self.log_dir = os.path.normpath(os.path.expandvars(self.log_dir))


@dataclass
class SamplingConfig:
    """Resource snapshot ring buffer."""
    ring_capacity: int = 100       # Snapshots kept; oldest dropped first

    def __post_init__(self) -> None:
        env_cap = os.getenv("BULKDIAG_RING_CAPACITY")
        if env_cap:
            self.ring_capacity = int(env_cap)


@dataclass
class AnalysisConfig:
    """
    Thresholds for the pattern analyzer and the contention rule.

    A kind is only reported as clustered when its count is strictly
    greater than the threshold.
    """
    timeout_cluster_threshold: int = 5
    constraint_hotspot_threshold: int = 3
    memory_pressure_mb: float = 500.0
    contention_consecutive_failures: int = 3


@dataclass
class ReportConfig:
    """Shape of the persisted report."""
    max_detailed_errors: int = 20
    session_type: str = "salesdata_upload_enhanced_diagnostics"


@dataclass
class SanitizerConfig:
    """
    Redaction of offending-data samples before they are stored or logged.

    Any mapping key that contains one of sensitive_keys (case-insensitive)
    has its value replaced with redaction_marker.
    """
    max_items: int = 2             # Array-like samples keep this many elements
    max_string_chars: int = 500    # Longer strings are truncated
    max_depth: int = 5             # Nesting below this is replaced by a marker
    redaction_marker: str = "[REDACTED]"
    sensitive_keys: List[str] = field(default_factory=lambda: [
        "password", "token", "key", "secret",
    ])


# -------------------------------------------------------------------
# Master Config
# -------------------------------------------------------------------

@dataclass
class Config:
    """
    Master configuration object for BulkDiag.

    Example:
        config = load_config(".")
        session = DiagnosticsSession(config=config)
    """
    paths: PathsConfig = field(default_factory=PathsConfig)
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    report: ReportConfig = field(default_factory=ReportConfig)
    sanitizer: SanitizerConfig = field(default_factory=SanitizerConfig)


# -------------------------------------------------------------------
# Helper: YAML dict -> dataclass (with safety net)
# -------------------------------------------------------------------

def _dict_to_dataclass(cls, data: dict):
    """
    Build a dataclass from a dictionary, ignoring unknown keys.

    Unknown keys produce a [WARN] on stderr with a suggestion when a
    known field name contains the key (or the other way round), so
    "ring_size" vs "ring_capacity" style typos do not silently fall
    back to defaults.
    """
    if not isinstance(data, dict):
        data = {}

    known_fields = {f.name for f in dataclasses.fields(cls)}

    filtered = {}
    for k, v in data.items():
        if k in known_fields:
            filtered[k] = v
        else:
            suggestion = ""
            for field_name in sorted(known_fields):
                if k in field_name or field_name in k:
                    suggestion = " Did you mean '" + field_name + "'?"
                    break
            print(
                "  [WARN] config/" + cls.__name__ + ": YAML key '"
                + str(k) + "' is not a recognized setting"
                + " -- IGNORED (using default)." + suggestion,
                file=sys.stderr,
            )

    return cls(**filtered)


# -------------------------------------------------------------------
# Main entry point: load_config()
# -------------------------------------------------------------------

def load_config(
    project_dir: str = ".",
    config_filename: str = "default_config.yaml",
    strict: bool = False,
) -> Config:
    """
    Load configuration from YAML file, with defaults and env var overrides.

    Parameters
    ----------
    project_dir : str
        Folder that contains the config/ subfolder.

    config_filename : str
        Name of the YAML config file inside config/.

    strict : bool
        Raise ConfigError when validate_config() reports problems.

    Returns
    -------
    Config
        Fully resolved configuration object.
    """
    config_path = Path(project_dir) / "config" / config_filename

    yaml_data: dict = {}
    if config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                yaml_data = raw

    config = Config(
        paths=_dict_to_dataclass(PathsConfig, yaml_data.get("paths", {})),
        sampling=_dict_to_dataclass(SamplingConfig, yaml_data.get("sampling", {})),
        analysis=_dict_to_dataclass(AnalysisConfig, yaml_data.get("analysis", {})),
        report=_dict_to_dataclass(ReportConfig, yaml_data.get("report", {})),
        sanitizer=_dict_to_dataclass(SanitizerConfig, yaml_data.get("sanitizer", {})),
    )

    if strict:
        problems = validate_config(config)
        if problems:
            raise ConfigError(problems=problems)

    return config


def validate_config(config: Config) -> List[str]:
    """
    Check a Config object for problems. Returns a list of error messages.
    Empty list = everything is valid.
    """
    errors: List[str] = []

    if config.sampling.ring_capacity < 1:
        errors.append(
            "sampling.ring_capacity must be at least 1, got "
            + str(config.sampling.ring_capacity)
        )

    a = config.analysis
    if a.timeout_cluster_threshold < 0:
        errors.append("analysis.timeout_cluster_threshold must be >= 0")
    if a.constraint_hotspot_threshold < 0:
        errors.append("analysis.constraint_hotspot_threshold must be >= 0")
    if a.memory_pressure_mb <= 0:
        errors.append("analysis.memory_pressure_mb must be > 0")
    if a.contention_consecutive_failures < 1:
        errors.append("analysis.contention_consecutive_failures must be >= 1")

    if config.report.max_detailed_errors < 0:
        errors.append("report.max_detailed_errors must be >= 0")
    if not config.report.session_type:
        errors.append("report.session_type is empty")

    s = config.sanitizer
    if s.max_items < 0:
        errors.append("sanitizer.max_items must be >= 0")
    if s.max_depth < 1:
        errors.append("sanitizer.max_depth must be >= 1")
    if not s.redaction_marker:
        errors.append("sanitizer.redaction_marker is empty")

    return errors


def ensure_directories(config: Config) -> None:
    """Create the database and log folders if they don't exist yet."""
    if config.paths.database:
        db_dir = os.path.dirname(config.paths.database)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    if config.paths.log_dir:
        os.makedirs(config.paths.log_dir, exist_ok=True)
