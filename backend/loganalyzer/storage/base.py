"""
Storage gateway abstraction.

Two implementations:
- SQLiteGateway: transactional row store (UPDATE/DELETE, generated ids)
- ClickHouseGateway: append-only analytical store (mutations, max(id)+1 ids)

The public operations live here and are identical for both; subclasses only
provide the backend-specific hooks. Every operation gets one self-heal retry:
if the backend reports a missing table, the schema is created and the
operation is retried exactly once.
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Optional, TypeVar

from loganalyzer.errors import StorageUnavailable
from loganalyzer.models.schemas import MAX_MESSAGE_LENGTH, LogPattern, LogRecord, Setting, utc_now
from loganalyzer.storage.dialects import SqlDialect
from loganalyzer.storage.statement_guard import ensure_read_only
from loganalyzer.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_PATTERNS = [
    ("INFO", "User {user_id} logged in from {ip_address}"),
    ("ERROR", "Database connection failed: {error_message}"),
    ("WARN", "High memory usage detected: {memory_percent}%"),
]

# (minutes ago, level, message)
DEFAULT_RECORDS = [
    (120, "INFO", "User john_doe logged in from 192.168.1.100"),
    (60, "ERROR", "Database connection failed: Connection timeout"),
    (30, "WARN", "High memory usage detected: 85%"),
]


class StorageGateway(ABC):
    """Abstract base for log stores."""

    backend_name: str = "abstract"
    dialect: SqlDialect

    # Exception types raised by the underlying driver.
    driver_errors: tuple[type[BaseException], ...] = ()

    # ── Backend hooks ──────────────────────────────────────────────────────

    @abstractmethod
    def _create_schema(self) -> None:
        """Create the three collections if they do not exist."""

    @abstractmethod
    def _is_missing_structure(self, exc: BaseException) -> bool:
        """True when ``exc`` means a table is missing."""

    @abstractmethod
    def _list_patterns(self) -> list[LogPattern]: ...

    @abstractmethod
    def _insert_pattern(self, pattern: LogPattern) -> LogPattern: ...

    @abstractmethod
    def _update_pattern(self, pattern: LogPattern) -> LogPattern: ...

    @abstractmethod
    def _delete_pattern(self, pattern_id: int) -> None: ...

    @abstractmethod
    def _find_setting(self, key: str) -> Optional[Setting]: ...

    @abstractmethod
    def _insert_setting(self, setting: Setting) -> Setting: ...

    @abstractmethod
    def _update_setting(self, setting_id: int, setting: Setting) -> Setting: ...

    @abstractmethod
    def _query_rows(self, statement: str) -> list[Mapping[str, Any]]:
        """Run a validated read-only statement and return rows keyed by column name."""

    @abstractmethod
    def _list_records(self) -> list[LogRecord]: ...

    @abstractmethod
    def _insert_record(self, record: LogRecord) -> LogRecord: ...

    @abstractmethod
    def _update_record(self, record: LogRecord) -> LogRecord: ...

    @abstractmethod
    def _delete_record(self, record_id: int) -> None: ...

    @abstractmethod
    def close(self) -> None:
        """Release pooled connections."""

    # ── Shared contract ────────────────────────────────────────────────────

    def initialize_schema(self) -> None:
        """Idempotently create log_entries, log_patterns and app_settings."""
        try:
            self._create_schema()
        except self.driver_errors as e:
            logger.error("Schema initialization failed", extra={
                "action": "schema_init", "backend": self.backend_name, "extra": str(e),
            })
            raise StorageUnavailable(f"Could not initialize {self.backend_name} schema: {e}") from e
        logger.info("Schema initialized", extra={"action": "schema_init", "backend": self.backend_name})

    def _run(self, operation: str, func: Callable[..., T], *args) -> T:
        try:
            return func(*args)
        except self.driver_errors as e:
            if not self._is_missing_structure(e):
                logger.error("Storage operation failed", extra={
                    "action": operation, "backend": self.backend_name, "extra": str(e),
                })
                raise StorageUnavailable(f"{operation} failed on {self.backend_name}: {e}") from e
            logger.warning("Storage structure missing, initializing schema and retrying once", extra={
                "action": operation, "backend": self.backend_name, "extra": str(e),
            })

        self.initialize_schema()
        try:
            return func(*args)
        except self.driver_errors as e:
            logger.error("Storage operation failed after schema initialization", extra={
                "action": operation, "backend": self.backend_name, "extra": str(e),
            })
            raise StorageUnavailable(f"{operation} failed on {self.backend_name}: {e}") from e

    def list_patterns(self) -> list[LogPattern]:
        return self._run("list_patterns", self._list_patterns)

    def save_pattern(self, pattern: LogPattern) -> LogPattern:
        """Insert when ``pattern.id`` is None, update otherwise."""
        if pattern.id is None:
            return self._run("insert_pattern", self._insert_pattern, pattern)
        return self._run("update_pattern", self._update_pattern, pattern)

    def delete_pattern(self, pattern_id: int) -> None:
        self._run("delete_pattern", self._delete_pattern, pattern_id)

    def find_setting(self, key: str) -> Optional[Setting]:
        return self._run("find_setting", self._find_setting, key)

    def save_setting(self, setting: Setting) -> Setting:
        """Upsert by key."""
        existing = self.find_setting(setting.key)
        if existing is not None and existing.id is not None:
            return self._run("update_setting", self._update_setting, existing.id, setting)
        return self._run("insert_setting", self._insert_setting, setting)

    def execute_log_query(self, query: str) -> list[LogRecord]:
        """Run a generated retrieval query. Anything but one read-only statement is rejected."""
        statement = ensure_read_only(query)
        start = time.monotonic()
        rows = self._run("execute_log_query", self._query_rows, statement)
        records = [self._row_to_record(row) for row in rows]
        logger.info("Log query executed", extra={
            "action": "execute_log_query",
            "backend": self.backend_name,
            "duration_ms": round((time.monotonic() - start) * 1000),
            "extra": {"rows": len(records)},
        })
        return records

    def list_records(self) -> list[LogRecord]:
        """All records, newest first."""
        return self._run("list_records", self._list_records)

    def save_record(self, record: LogRecord) -> LogRecord:
        if record.id is None:
            return self._run("insert_record", self._insert_record, record)
        return self._run("update_record", self._update_record, record)

    def delete_record(self, record_id: int) -> None:
        self._run("delete_record", self._delete_record, record_id)

    def seed_defaults(self) -> None:
        """Pre-populate sample patterns and records when the collections are empty."""
        if not self.list_patterns():
            for level, template in DEFAULT_PATTERNS:
                self.save_pattern(LogPattern(level=level, template=template))
            logger.info("Seeded default log patterns", extra={"action": "seed", "backend": self.backend_name})
        if not self.list_records():
            now = utc_now()
            for minutes_ago, level, message in DEFAULT_RECORDS:
                self.save_record(LogRecord(
                    timestamp=now - timedelta(minutes=minutes_ago), level=level, message=message,
                ))
            logger.info("Seeded sample log records", extra={"action": "seed", "backend": self.backend_name})

    # ── Row normalization ──────────────────────────────────────────────────

    @staticmethod
    def _row_to_record(row: Mapping[str, Any]) -> LogRecord:
        """Map a result row onto LogRecord, whatever the column casing or table alias."""
        columns = {str(k).split(".")[-1].lower(): v for k, v in dict(row).items()}
        level = columns.get("log_level", columns.get("level"))
        missing = [name for name, value in (
            ("timestamp", columns.get("timestamp")),
            ("log_level", level),
            ("message", columns.get("message")),
        ) if value is None]
        if missing:
            raise StorageUnavailable(
                f"Query result is missing column(s) {', '.join(missing)}; "
                "select id, timestamp, log_level, message"
            )
        timestamp = columns["timestamp"]
        record_id = columns.get("id")
        try:
            if isinstance(timestamp, str):
                timestamp = datetime.fromisoformat(timestamp)
            return LogRecord(
                id=int(record_id) if record_id is not None else None,
                timestamp=timestamp,
                level=str(level),
                message=str(columns["message"])[:MAX_MESSAGE_LENGTH],
            )
        except ValueError as e:
            raise StorageUnavailable(f"Query result row is not a log record: {e}") from e
