"""
Runtime configuration for the log analyzer.

Values come from environment variables (optionally loaded from a .env file by
the API entry point) and are frozen into an AppConfig that is passed
explicitly to the components that need it.
"""

import os
from dataclasses import dataclass, field

from loganalyzer.utils.logger import get_logger

logger = get_logger("config")

SUPPORTED_BACKENDS = ("sqlite", "clickhouse")


@dataclass(frozen=True)
class AppConfig:
    """Immutable application configuration."""
    # Storage
    storage_backend: str = "sqlite"
    sqlite_path: str = "./data/loganalyzer.db"
    sqlite_pool_size: int = 5
    clickhouse_host: str = "localhost"
    clickhouse_port: int = 8123
    clickhouse_user: str = "default"
    clickhouse_password: str = ""
    clickhouse_database: str = "default"
    clickhouse_pool_size: int = 8

    # Text generation
    llm_base_url: str = "https://api.deepseek.com/v1"
    llm_model: str = "deepseek-chat"
    llm_timeout_seconds: float = 60.0
    llm_max_tokens: int = 4000
    llm_temperature: float = 0.1

    # Pipeline
    analysis_max_records: int = 100
    seed_sample_data: bool = True

    # Secrets
    master_key: str = ""

    # HTTP
    cors_origins: tuple = field(default=("http://localhost:5000",))

    def __post_init__(self):
        if self.storage_backend not in SUPPORTED_BACKENDS:
            raise ValueError(
                f"Unsupported STORAGE_BACKEND {self.storage_backend!r}; "
                f"expected one of {', '.join(SUPPORTED_BACKENDS)}"
            )
        if self.analysis_max_records < 1:
            raise ValueError("ANALYSIS_MAX_RECORDS must be at least 1")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_config() -> AppConfig:
    """Build an AppConfig from environment variables."""
    origins = os.getenv("CORS_ORIGINS", "http://localhost:5000")
    config = AppConfig(
        storage_backend=os.getenv("STORAGE_BACKEND", "sqlite").strip().lower(),
        sqlite_path=os.getenv("SQLITE_PATH", "./data/loganalyzer.db"),
        sqlite_pool_size=int(os.getenv("SQLITE_POOL_SIZE", "5")),
        clickhouse_host=os.getenv("CLICKHOUSE_HOST", "localhost"),
        clickhouse_port=int(os.getenv("CLICKHOUSE_PORT", "8123")),
        clickhouse_user=os.getenv("CLICKHOUSE_USER", "default"),
        clickhouse_password=os.getenv("CLICKHOUSE_PASSWORD", ""),
        clickhouse_database=os.getenv("CLICKHOUSE_DATABASE", "default"),
        clickhouse_pool_size=int(os.getenv("CLICKHOUSE_POOL_SIZE", "8")),
        llm_base_url=os.getenv("LLM_BASE_URL", "https://api.deepseek.com/v1"),
        llm_model=os.getenv("LLM_MODEL", "deepseek-chat"),
        llm_timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", "60")),
        llm_max_tokens=int(os.getenv("LLM_MAX_TOKENS", "4000")),
        llm_temperature=float(os.getenv("LLM_TEMPERATURE", "0.1")),
        analysis_max_records=int(os.getenv("ANALYSIS_MAX_RECORDS", "100")),
        seed_sample_data=_env_bool("SEED_SAMPLE_DATA", True),
        master_key=os.getenv("LOGANALYZER_MASTER_KEY", ""),
        cors_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
    )
    logger.info("Configuration loaded", extra={
        "action": "config_load",
        "backend": config.storage_backend,
        "extra": {
            "llm_base_url": config.llm_base_url,
            "llm_model": config.llm_model,
            "llm_timeout_seconds": config.llm_timeout_seconds,
            "analysis_max_records": config.analysis_max_records,
        },
    })
    return config
