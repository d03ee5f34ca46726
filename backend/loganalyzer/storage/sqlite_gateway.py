"""
SQLite-backed storage gateway (transactional row store).
"""

import sqlite3
from typing import Optional

from loganalyzer.models.schemas import LogPattern, LogRecord, Setting
from loganalyzer.storage.base import StorageGateway
from loganalyzer.storage.dialects import (
    PATTERNS_TABLE, RECORDS_TABLE, SETTINGS_TABLE, SQLITE_DIALECT,
)
from loganalyzer.storage.pool import SQLiteConnectionPool

DEFAULT_DB_PATH = "./data/loganalyzer.db"

SCHEMA_STATEMENTS = (
    f"""
    CREATE TABLE IF NOT EXISTS {RECORDS_TABLE} (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        timestamp TEXT NOT NULL,
        log_level VARCHAR(10) NOT NULL,
        message TEXT NOT NULL
    )
    """,
    f"CREATE INDEX IF NOT EXISTS idx_{RECORDS_TABLE}_timestamp ON {RECORDS_TABLE} (timestamp)",
    f"""
    CREATE TABLE IF NOT EXISTS {PATTERNS_TABLE} (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        log_level VARCHAR(10) NOT NULL,
        log_template TEXT NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {SETTINGS_TABLE} (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        setting_key VARCHAR(255) NOT NULL UNIQUE,
        setting_value TEXT NOT NULL
    )
    """,
)


class SQLiteGateway(StorageGateway):
    """SQLite store for log records, patterns and settings."""

    backend_name = "sqlite"
    dialect = SQLITE_DIALECT
    driver_errors = (sqlite3.Error,)

    def __init__(self, db_path: str = DEFAULT_DB_PATH, pool_size: int = 5,
                 pool: Optional[SQLiteConnectionPool] = None):
        self._pool = pool or SQLiteConnectionPool(db_path, max_size=pool_size)

    def _create_schema(self) -> None:
        with self._pool.connection() as conn:
            for statement in SCHEMA_STATEMENTS:
                conn.execute(statement)

    def _is_missing_structure(self, exc: BaseException) -> bool:
        return isinstance(exc, sqlite3.OperationalError) and "no such table" in str(exc).lower()

    # ── Patterns ───────────────────────────────────────────────────────────

    def _list_patterns(self) -> list[LogPattern]:
        with self._pool.connection() as conn:
            rows = conn.execute(
                f"SELECT id, log_level, log_template FROM {PATTERNS_TABLE} ORDER BY id"
            ).fetchall()
        return [LogPattern(id=r["id"], level=r["log_level"], template=r["log_template"]) for r in rows]

    def _insert_pattern(self, pattern: LogPattern) -> LogPattern:
        with self._pool.connection() as conn:
            cursor = conn.execute(
                f"INSERT INTO {PATTERNS_TABLE} (log_level, log_template) VALUES (?, ?)",
                (pattern.level, pattern.template),
            )
            new_id = cursor.lastrowid
        return pattern.model_copy(update={"id": new_id})

    def _update_pattern(self, pattern: LogPattern) -> LogPattern:
        with self._pool.connection() as conn:
            conn.execute(
                f"UPDATE {PATTERNS_TABLE} SET log_level = ?, log_template = ? WHERE id = ?",
                (pattern.level, pattern.template, pattern.id),
            )
        return pattern

    def _delete_pattern(self, pattern_id: int) -> None:
        with self._pool.connection() as conn:
            conn.execute(f"DELETE FROM {PATTERNS_TABLE} WHERE id = ?", (pattern_id,))

    # ── Settings ───────────────────────────────────────────────────────────

    def _find_setting(self, key: str) -> Optional[Setting]:
        with self._pool.connection() as conn:
            row = conn.execute(
                f"SELECT id, setting_key, setting_value FROM {SETTINGS_TABLE} WHERE setting_key = ? LIMIT 1",
                (key,),
            ).fetchone()
        if row is None:
            return None
        return Setting(id=row["id"], key=row["setting_key"], value=row["setting_value"])

    def _insert_setting(self, setting: Setting) -> Setting:
        with self._pool.connection() as conn:
            cursor = conn.execute(
                f"INSERT INTO {SETTINGS_TABLE} (setting_key, setting_value) VALUES (?, ?)",
                (setting.key, setting.value),
            )
            new_id = cursor.lastrowid
        return setting.model_copy(update={"id": new_id})

    def _update_setting(self, setting_id: int, setting: Setting) -> Setting:
        with self._pool.connection() as conn:
            conn.execute(
                f"UPDATE {SETTINGS_TABLE} SET setting_value = ? WHERE id = ?",
                (setting.value, setting_id),
            )
        return Setting(id=setting_id, key=setting.key, value=setting.value)

    # ── Records ────────────────────────────────────────────────────────────

    def _query_rows(self, statement: str) -> list[dict]:
        with self._pool.connection() as conn:
            conn.execute("PRAGMA query_only = ON")
            try:
                rows = conn.execute(statement).fetchall()
            finally:
                conn.execute("PRAGMA query_only = OFF")
        return [dict(r) for r in rows]

    def _list_records(self) -> list[LogRecord]:
        with self._pool.connection() as conn:
            rows = conn.execute(
                f"SELECT id, timestamp, log_level, message FROM {RECORDS_TABLE} "
                "ORDER BY timestamp DESC, id DESC"
            ).fetchall()
        return [self._row_to_record(dict(r)) for r in rows]

    def _insert_record(self, record: LogRecord) -> LogRecord:
        with self._pool.connection() as conn:
            cursor = conn.execute(
                f"INSERT INTO {RECORDS_TABLE} (timestamp, log_level, message) VALUES (?, ?, ?)",
                (record.timestamp.isoformat(sep=" "), record.level, record.message),
            )
            new_id = cursor.lastrowid
        return record.model_copy(update={"id": new_id})

    def _update_record(self, record: LogRecord) -> LogRecord:
        with self._pool.connection() as conn:
            conn.execute(
                f"UPDATE {RECORDS_TABLE} SET timestamp = ?, log_level = ?, message = ? WHERE id = ?",
                (record.timestamp.isoformat(sep=" "), record.level, record.message, record.id),
            )
        return record

    def _delete_record(self, record_id: int) -> None:
        with self._pool.connection() as conn:
            conn.execute(f"DELETE FROM {RECORDS_TABLE} WHERE id = ?", (record_id,))

    def close(self) -> None:
        self._pool.close()
