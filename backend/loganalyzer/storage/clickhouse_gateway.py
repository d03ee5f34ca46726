"""
ClickHouse-backed storage gateway (append-only analytical store).

ClickHouse has no UPDATE/DELETE statements and no auto-increment. Updates and
deletes are issued as ``ALTER TABLE ... UPDATE/DELETE`` mutations and run with
``mutations_sync=1`` so the change is visible when the call returns. New ids
are computed as ``max(id) + 1``: this read-then-insert is NOT atomic, and two
concurrent writers to the same table can be handed the same id. Callers that
write concurrently must serialize writes themselves.
"""

import threading
from datetime import datetime, timezone
from typing import Any, Optional

import clickhouse_connect
from clickhouse_connect.driver import httputil
from clickhouse_connect.driver.exceptions import ClickHouseError

from loganalyzer.models.schemas import LogPattern, LogRecord, Setting
from loganalyzer.storage.base import StorageGateway
from loganalyzer.storage.dialects import (
    CLICKHOUSE_DIALECT, PATTERNS_TABLE, RECORDS_TABLE, SETTINGS_TABLE,
)
from loganalyzer.utils.logger import get_logger

logger = get_logger(__name__)

MUTATION_SETTINGS = {"mutations_sync": 1}

SCHEMA_STATEMENTS = (
    f"""
    CREATE TABLE IF NOT EXISTS {RECORDS_TABLE}
    (
        id UInt64,
        timestamp DateTime('UTC'),
        log_level String,
        message String
    )
    ENGINE = MergeTree
    ORDER BY (timestamp, id)
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {PATTERNS_TABLE}
    (
        id UInt64,
        log_level String,
        log_template String
    )
    ENGINE = MergeTree
    ORDER BY (id)
    """,
    f"""
    CREATE TABLE IF NOT EXISTS {SETTINGS_TABLE}
    (
        id UInt64,
        setting_key String,
        setting_value String
    )
    ENGINE = MergeTree
    ORDER BY (id)
    """,
)


def _as_utc(value: datetime) -> datetime:
    # The driver reads naive datetimes as local time.
    return value.replace(tzinfo=timezone.utc)


class ClickHouseGateway(StorageGateway):
    """ClickHouse store for log records, patterns and settings."""

    backend_name = "clickhouse"
    dialect = CLICKHOUSE_DIALECT
    driver_errors = (ClickHouseError,)

    def __init__(
        self,
        host: str = "localhost",
        port: int = 8123,
        username: str = "default",
        password: str = "",
        database: str = "default",
        pool_size: int = 8,
        client: Any = None,
    ):
        self._settings = dict(host=host, port=port, username=username,
                              password=password, database=database)
        self._pool_size = pool_size
        self._client = client
        self._lock = threading.Lock()

    def _get_client(self):
        """Lazily create one client over a shared HTTP connection pool."""
        with self._lock:
            if self._client is None:
                pool_mgr = httputil.get_pool_manager(maxsize=self._pool_size)
                self._client = clickhouse_connect.get_client(
                    **self._settings,
                    pool_mgr=pool_mgr,
                    autogenerate_session_id=False,
                    connect_timeout=10,
                    send_receive_timeout=60,
                )
                logger.info("ClickHouse client created", extra={
                    "action": "connect", "backend": self.backend_name,
                    "extra": {"host": self._settings["host"], "database": self._settings["database"]},
                })
            return self._client

    def _create_schema(self) -> None:
        client = self._get_client()
        for statement in SCHEMA_STATEMENTS:
            client.command(statement)

    def _is_missing_structure(self, exc: BaseException) -> bool:
        text = str(exc)
        return "UNKNOWN_TABLE" in text or "Code: 60." in text

    def _next_id(self, table: str) -> int:
        # Not atomic; see module docstring.
        result = self._get_client().query(f"SELECT max(id) + 1 FROM {table}")
        value = result.result_rows[0][0] if result.result_rows else None
        return int(value) if value else 1

    def _rows(self, sql: str, parameters: Optional[dict] = None) -> list[dict]:
        result = self._get_client().query(sql, parameters=parameters)
        columns = list(result.column_names)
        return [dict(zip(columns, row)) for row in result.result_rows]

    # ── Patterns ───────────────────────────────────────────────────────────

    def _list_patterns(self) -> list[LogPattern]:
        rows = self._rows(f"SELECT id, log_level, log_template FROM {PATTERNS_TABLE} ORDER BY id")
        return [LogPattern(id=int(r["id"]), level=r["log_level"], template=r["log_template"]) for r in rows]

    def _insert_pattern(self, pattern: LogPattern) -> LogPattern:
        new_id = self._next_id(PATTERNS_TABLE)
        self._get_client().insert(
            PATTERNS_TABLE,
            [[new_id, pattern.level, pattern.template]],
            column_names=["id", "log_level", "log_template"],
        )
        return pattern.model_copy(update={"id": new_id})

    def _update_pattern(self, pattern: LogPattern) -> LogPattern:
        self._get_client().command(
            f"ALTER TABLE {PATTERNS_TABLE} UPDATE log_level = %(level)s, log_template = %(template)s "
            "WHERE id = %(id)s",
            parameters={"level": pattern.level, "template": pattern.template, "id": pattern.id},
            settings=MUTATION_SETTINGS,
        )
        return pattern

    def _delete_pattern(self, pattern_id: int) -> None:
        self._get_client().command(
            f"ALTER TABLE {PATTERNS_TABLE} DELETE WHERE id = %(id)s",
            parameters={"id": pattern_id},
            settings=MUTATION_SETTINGS,
        )

    # ── Settings ───────────────────────────────────────────────────────────

    def _find_setting(self, key: str) -> Optional[Setting]:
        rows = self._rows(
            f"SELECT id, setting_key, setting_value FROM {SETTINGS_TABLE} "
            "WHERE setting_key = %(key)s ORDER BY id LIMIT 1",
            parameters={"key": key},
        )
        if not rows:
            return None
        row = rows[0]
        return Setting(id=int(row["id"]), key=row["setting_key"], value=row["setting_value"])

    def _insert_setting(self, setting: Setting) -> Setting:
        new_id = self._next_id(SETTINGS_TABLE)
        self._get_client().insert(
            SETTINGS_TABLE,
            [[new_id, setting.key, setting.value]],
            column_names=["id", "setting_key", "setting_value"],
        )
        return setting.model_copy(update={"id": new_id})

    def _update_setting(self, setting_id: int, setting: Setting) -> Setting:
        self._get_client().command(
            f"ALTER TABLE {SETTINGS_TABLE} UPDATE setting_value = %(value)s WHERE id = %(id)s",
            parameters={"value": setting.value, "id": setting_id},
            settings=MUTATION_SETTINGS,
        )
        return Setting(id=setting_id, key=setting.key, value=setting.value)

    # ── Records ────────────────────────────────────────────────────────────

    def _query_rows(self, statement: str) -> list[dict]:
        return self._rows(statement)

    def _list_records(self) -> list[LogRecord]:
        rows = self._rows(
            f"SELECT id, timestamp, log_level, message FROM {RECORDS_TABLE} "
            "ORDER BY timestamp DESC, id DESC"
        )
        return [self._row_to_record(r) for r in rows]

    def _insert_record(self, record: LogRecord) -> LogRecord:
        new_id = self._next_id(RECORDS_TABLE)
        self._get_client().insert(
            RECORDS_TABLE,
            [[new_id, _as_utc(record.timestamp), record.level, record.message]],
            column_names=["id", "timestamp", "log_level", "message"],
        )
        return record.model_copy(update={"id": new_id})

    def _update_record(self, record: LogRecord) -> LogRecord:
        # timestamp is part of the sorting key and cannot be mutated in place.
        # A changed timestamp means insert the replacement, then drop the old row.
        client = self._get_client()
        params = {"id": record.id, "ts": record.timestamp, "level": record.level, "message": record.message}
        same_row = client.query(
            f"SELECT count() FROM {RECORDS_TABLE} WHERE id = %(id)s AND timestamp = %(ts)s",
            parameters=params,
        )
        if same_row.result_rows and same_row.result_rows[0][0]:
            client.command(
                f"ALTER TABLE {RECORDS_TABLE} UPDATE log_level = %(level)s, message = %(message)s "
                "WHERE id = %(id)s",
                parameters=params,
                settings=MUTATION_SETTINGS,
            )
            return record

        client.insert(
            RECORDS_TABLE,
            [[record.id, _as_utc(record.timestamp), record.level, record.message]],
            column_names=["id", "timestamp", "log_level", "message"],
        )
        client.command(
            f"ALTER TABLE {RECORDS_TABLE} DELETE WHERE id = %(id)s AND timestamp != %(ts)s",
            parameters=params,
            settings=MUTATION_SETTINGS,
        )
        return record

    def _delete_record(self, record_id: int) -> None:
        self._get_client().command(
            f"ALTER TABLE {RECORDS_TABLE} DELETE WHERE id = %(id)s",
            parameters={"id": record_id},
            settings=MUTATION_SETTINGS,
        )

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None
