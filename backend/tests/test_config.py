import json
import logging

import pytest

from loganalyzer.config import AppConfig, load_config
from loganalyzer.storage import create_gateway
from loganalyzer.storage.clickhouse_gateway import ClickHouseGateway
from loganalyzer.storage.dialects import CLICKHOUSE_DIALECT, SQLITE_DIALECT
from loganalyzer.storage.sqlite_gateway import SQLiteGateway
from loganalyzer.utils.logger import JSONFormatter, redact, truncate


class TestLoadConfig:
    def test_defaults(self, monkeypatch):
        for name in ("STORAGE_BACKEND", "ANALYSIS_MAX_RECORDS", "LLM_MODEL", "SEED_SAMPLE_DATA", "CORS_ORIGINS"):
            monkeypatch.delenv(name, raising=False)
        config = load_config()
        assert config.storage_backend == "sqlite"
        assert config.analysis_max_records == 100
        assert config.llm_model == "deepseek-chat"
        assert config.llm_max_tokens == 4000
        assert config.seed_sample_data is True

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("STORAGE_BACKEND", " ClickHouse ")
        monkeypatch.setenv("CLICKHOUSE_PORT", "9000")
        monkeypatch.setenv("LLM_TIMEOUT_SECONDS", "12.5")
        monkeypatch.setenv("SEED_SAMPLE_DATA", "no")
        monkeypatch.setenv("CORS_ORIGINS", "http://a.test, http://b.test,")
        config = load_config()
        assert config.storage_backend == "clickhouse"
        assert config.clickhouse_port == 9000
        assert config.llm_timeout_seconds == 12.5
        assert config.seed_sample_data is False
        assert config.cors_origins == ("http://a.test", "http://b.test")

    def test_unsupported_backend(self, monkeypatch):
        monkeypatch.setenv("STORAGE_BACKEND", "postgres")
        with pytest.raises(ValueError, match="Unsupported STORAGE_BACKEND"):
            load_config()

    def test_record_limit_must_be_positive(self):
        with pytest.raises(ValueError):
            AppConfig(analysis_max_records=0)


class TestCreateGateway:
    def test_sqlite(self, tmp_path):
        gateway = create_gateway(AppConfig(sqlite_path=str(tmp_path / "x.db")))
        try:
            assert isinstance(gateway, SQLiteGateway)
            assert gateway.dialect is SQLITE_DIALECT
        finally:
            gateway.close()

    def test_clickhouse_does_not_connect_eagerly(self):
        gateway = create_gateway(AppConfig(storage_backend="clickhouse", clickhouse_host="unreachable.invalid"))
        assert isinstance(gateway, ClickHouseGateway)
        assert gateway.dialect is CLICKHOUSE_DIALECT
        assert gateway.backend_name == "clickhouse"


class TestLogger:
    def _record(self, **extra):
        record = logging.LogRecord("loganalyzer.test", logging.INFO, __file__, 1, "Stage reached", None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_output_with_known_keys(self):
        line = JSONFormatter().format(self._record(stage="query_generated", backend="sqlite", secret="x"))
        data = json.loads(line)
        assert data["message"] == "Stage reached"
        assert data["level"] == "INFO"
        assert data["stage"] == "query_generated"
        assert data["backend"] == "sqlite"
        assert "secret" not in data

    def test_credentials_are_masked(self):
        line = JSONFormatter().format(self._record(extra={"headers": "Authorization: Bearer sk-abcdef123456"}))
        assert "abcdef123456" not in line
        assert redact("key sk-1234567890abcd saved") == "key sk-**** saved"
        assert redact(["plain", 3]) == ["plain", 3]

    def test_truncate(self):
        assert truncate("abcdef", 3) == "abc..."
        assert truncate("abc", 3) == "abc"
        assert truncate(None, 3) is None
