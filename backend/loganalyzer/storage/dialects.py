"""
Query-language descriptions handed to the query generator.

Each gateway exposes one of these so that the prompt is grounded in the
dialect of the active backend without the generator knowing which backend
it is talking to.
"""

from dataclasses import dataclass

RECORDS_TABLE = "log_entries"
PATTERNS_TABLE = "log_patterns"
SETTINGS_TABLE = "app_settings"

RECORD_COLUMNS = ("id", "timestamp", "log_level", "message")


@dataclass(frozen=True)
class SqlDialect:
    name: str
    table_definition: str
    substring_match: str
    extract_function: str
    notes: str

    def match(self, column: str, needle: str) -> str:
        """Render a case-insensitive substring predicate in this dialect."""
        return f"{column} {self.substring_match} '%{needle}%'"


SQLITE_DIALECT = SqlDialect(
    name="SQLite 3",
    table_definition=(
        f"CREATE TABLE {RECORDS_TABLE} (\n"
        "  id INTEGER PRIMARY KEY AUTOINCREMENT,\n"
        "  timestamp TEXT,        -- UTC, ISO-8601, e.g. 2024-05-01 12:30:00\n"
        "  log_level VARCHAR(10),\n"
        "  message TEXT\n"
        ");"
    ),
    substring_match="LIKE",
    extract_function=(
        "substr(message, instr(message, 'requestId=') + 10, 36) "
        "to cut a value that follows a known prefix"
    ),
    notes=(
        "LIKE is case-insensitive for ASCII text; ILIKE and REGEXP functions do not exist. "
        "Timestamps are stored in UTC; compare them as ISO-8601 strings "
        "or with datetime('now', '-1 hour')."
    ),
)

CLICKHOUSE_DIALECT = SqlDialect(
    name="ClickHouse",
    table_definition=(
        f"CREATE TABLE {RECORDS_TABLE} (\n"
        "  id UInt64,\n"
        "  timestamp DateTime('UTC'),\n"
        "  log_level String,\n"
        "  message String\n"
        ") ENGINE = MergeTree ORDER BY (timestamp, id);"
    ),
    substring_match="ILIKE",
    extract_function="extract(message, 'requestId=([a-zA-Z0-9-]+)') to capture a value with a regular expression",
    notes=(
        "Use ILIKE for case-insensitive search. Timestamps are DateTime values in UTC; "
        "use now() - INTERVAL 1 HOUR for relative windows."
    ),
)
