"""
Selects the storage gateway named by the configuration.
"""

from loganalyzer.config import AppConfig
from loganalyzer.storage.base import StorageGateway
from loganalyzer.utils.logger import get_logger

logger = get_logger(__name__)


def create_gateway(config: AppConfig) -> StorageGateway:
    """Build the gateway for ``config.storage_backend``."""
    if config.storage_backend == "sqlite":
        from loganalyzer.storage.sqlite_gateway import SQLiteGateway
        gateway: StorageGateway = SQLiteGateway(
            db_path=config.sqlite_path, pool_size=config.sqlite_pool_size,
        )
    elif config.storage_backend == "clickhouse":
        from loganalyzer.storage.clickhouse_gateway import ClickHouseGateway
        gateway = ClickHouseGateway(
            host=config.clickhouse_host,
            port=config.clickhouse_port,
            username=config.clickhouse_user,
            password=config.clickhouse_password,
            database=config.clickhouse_database,
            pool_size=config.clickhouse_pool_size,
        )
    else:
        raise ValueError(f"Unsupported storage backend: {config.storage_backend!r}")

    logger.info("Storage gateway selected", extra={"action": "gateway_select", "backend": gateway.backend_name})
    return gateway
