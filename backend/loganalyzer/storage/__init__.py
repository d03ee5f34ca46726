"""Storage gateways: one contract, a SQLite and a ClickHouse implementation."""
from .base import StorageGateway
from .factory import create_gateway
from .statement_guard import ensure_read_only

__all__ = [
    'StorageGateway',
    'create_gateway',
    'ensure_read_only',
]
