# ============================================================================
# BulkDiag - Session Log Tool (bulkdiag/tools/session_log.py)
# ============================================================================
# What this tool does:
# - Lists the most recent diagnostics reports in the sync_log table
# - For each: status, duration, error breakdown, recommendations
#
# Usage:
#   python -m bulkdiag.tools.session_log
#   python -m bulkdiag.tools.session_log --db data/bulkdiag.sqlite3 --limit 5
#   python -m bulkdiag.tools.session_log --json
# ============================================================================

from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any, Dict, List, Optional

from bulkdiag.core.config import load_config
from bulkdiag.core.exceptions import PersistError
from bulkdiag.monitoring.log_store import SQLiteLogStore


def get_db_path(explicit: str = "") -> str:
    if explicit:
        return explicit
    config = load_config(".")
    return config.paths.database or os.path.join(
        os.getenv("BULKDIAG_DATA_DIR", ""), "bulkdiag.sqlite3"
    )


def _diagnostics(row: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    errors = row.get("errors")
    if isinstance(errors, list) and errors and isinstance(errors[0], dict):
        return errors[0]
    return None


def format_row(row: Dict[str, Any]) -> List[str]:
    """Human-readable lines for one sync_log row."""
    lines = [
        f"[{row.get('status', '?').upper()}] {row.get('created_at', '')}  {row.get('sync_type', '')}",
        f"  Records: processed={row.get('records_processed', 0)}"
        f" inserted={row.get('records_inserted', 0)}"
        f" duration={float(row.get('sync_duration_ms') or 0) / 1000:.1f}s",
    ]
    if row.get("synced_by"):
        lines.append(f"  By: {row['synced_by']}")

    diag = _diagnostics(row)
    if diag is None:
        lines.append("  Errors: none")
        return lines

    lines.append(f"  Session: {diag.get('session_id', '')}")
    breakdown = diag.get("error_breakdown") or {}
    seen = ", ".join(f"{k}={v}" for k, v in breakdown.items() if v)
    lines.append(f"  Errors: {diag.get('total_errors', 0)} ({seen or 'unclassified'})")

    metrics = diag.get("performance_metrics") or {}
    if metrics.get("resource_contention_detected"):
        lines.append("  Resource contention detected")

    for tip in (diag.get("error_analysis") or {}).get("recommended_actions", []):
        lines.append(f"  -> {tip}")
    return lines


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Show recent bulk upload diagnostics.")
    parser.add_argument("--db", default="", help="Path to the diagnostics SQLite database")
    parser.add_argument("--limit", type=int, default=10, help="Rows to show (default 10)")
    parser.add_argument("--type", default="", dest="session_type",
                        help="Only rows with this sync_type")
    parser.add_argument("--json", action="store_true", help="Print raw rows as JSON")
    args = parser.parse_args(argv)

    db = get_db_path(args.db)
    if not os.path.exists(db):
        print(f"DB not found: {db}")
        return 1

    try:
        rows = SQLiteLogStore(db).recent_records(limit=args.limit,
                                                 session_type=args.session_type)
    except PersistError as e:
        print(f"[ERROR] {e} -- {e.fix_suggestion}")
        return 1

    if args.json:
        print(json.dumps(rows, indent=2, default=str))
        return 0

    if not rows:
        print("No diagnostics sessions recorded yet.")
        return 0

    print(f"DB: {db}")
    print("")
    for row in rows:
        for line in format_row(row):
            print(line)
        print("")
    return 0


if __name__ == "__main__":
    sys.exit(main())
