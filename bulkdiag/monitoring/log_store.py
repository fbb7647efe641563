# ============================================================================
# BulkDiag -- Log Store (bulkdiag/monitoring/log_store.py)
# ============================================================================
# What this file does (plain English):
# - Defines the one thing the diagnostics engine needs from storage:
#   "append this record"
# - SQLiteLogStore writes each finished session as one row in a sync_log
#   table, next to any other sync/import logs the host keeps there
# - InMemoryLogStore keeps rows in a list (tests, embedding in a service
#   that forwards them elsewhere)
#
# Failure contract:
# - append_log_record() raises PersistError and nothing else
# - The session catches it; an upload never fails because its
#   diagnostics could not be saved
# ============================================================================

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List

from bulkdiag.core.exceptions import PersistError
from bulkdiag.core.models import LogRecord


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class LogStore:
    """Interface: persist one LogRecord per finalized session."""

    def append_log_record(self, record: LogRecord) -> None:
        raise NotImplementedError


class InMemoryLogStore(LogStore):
    """List-backed store. Thread-safe."""

    def __init__(self):
        self._records: List[LogRecord] = []
        self._lock = threading.Lock()

    def append_log_record(self, record: LogRecord) -> None:
        with self._lock:
            self._records.append(record)

    @property
    def records(self) -> List[LogRecord]:
        with self._lock:
            return list(self._records)


class SQLiteLogStore(LogStore):
    """
    Writes session reports to SQLite table:
      - sync_log

    Each call opens and closes its own connection, so one store can be
    shared by sessions on different threads.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._ensure_tables()

    # ------------------------------------------------------------------
    # SQLite helpers
    # ------------------------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        """Open a connection with safe settings."""
        con = sqlite3.connect(self.db_path)
        con.execute("PRAGMA journal_mode=WAL;")
        con.execute("PRAGMA synchronous=NORMAL;")
        con.execute("PRAGMA busy_timeout=5000;")
        return con

    def _ensure_tables(self) -> None:
        try:
            con = self._connect()
        except sqlite3.Error as e:
            raise PersistError(f"Cannot open diagnostics database: {self.db_path}", cause=e)
        try:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS sync_log (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    created_at TEXT NOT NULL,
                    sync_type TEXT NOT NULL,
                    status TEXT NOT NULL, -- success|partial|failed
                    records_processed INTEGER NOT NULL,
                    records_inserted INTEGER NOT NULL,
                    records_updated INTEGER NOT NULL,
                    errors TEXT,          -- JSON, NULL when the session had no failures
                    sync_duration_ms REAL NOT NULL,
                    synced_by TEXT
                );
                """
            )
            con.execute("CREATE INDEX IF NOT EXISTS idx_sync_log_created ON sync_log(created_at);")
            con.execute("CREATE INDEX IF NOT EXISTS idx_sync_log_type ON sync_log(sync_type, created_at);")
            con.commit()
        except sqlite3.Error as e:
            raise PersistError("Cannot create sync_log table", cause=e)
        finally:
            con.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def append_log_record(self, record: LogRecord) -> None:
        try:
            con = self._connect()
        except sqlite3.Error as e:
            raise PersistError(f"Cannot open diagnostics database: {self.db_path}", cause=e)
        try:
            con.execute(
                """
                INSERT INTO sync_log (
                    created_at, sync_type, status, records_processed,
                    records_inserted, records_updated, errors,
                    sync_duration_ms, synced_by
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    utc_now_iso(),
                    record.session_type,
                    record.status,
                    int(record.records_processed),
                    int(record.records_inserted),
                    int(record.records_updated),
                    record.errors_json,
                    float(record.duration_ms),
                    record.actor_id,
                ),
            )
            con.commit()
        except sqlite3.Error as e:
            raise PersistError("Failed to insert diagnostics row", cause=e)
        finally:
            con.close()

    def recent_records(self, limit: int = 50, session_type: str = "") -> List[Dict[str, Any]]:
        """
        Newest rows first. The errors column is decoded from JSON
        (left as the raw string if it does not parse).
        """
        sql = (
            "SELECT id, created_at, sync_type, status, records_processed,"
            " records_inserted, records_updated, errors, sync_duration_ms, synced_by"
            " FROM sync_log"
        )
        params: list = []
        if session_type:
            sql += " WHERE sync_type=?"
            params.append(session_type)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(max(0, int(limit)))

        try:
            con = self._connect()
        except sqlite3.Error as e:
            raise PersistError(f"Cannot open diagnostics database: {self.db_path}", cause=e)
        try:
            con.row_factory = sqlite3.Row
            rows = con.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise PersistError("Failed to read sync_log", cause=e)
        finally:
            con.close()

        out = []
        for row in rows:
            d = dict(row)
            if d.get("errors"):
                try:
                    d["errors"] = json.loads(d["errors"])
                except ValueError:
                    pass
            out.append(d)
        return out
