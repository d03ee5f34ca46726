from loganalyzer.errors import StorageUnavailable
from loganalyzer.models.schemas import LogPattern
from loganalyzer.storage.base import StorageGateway


class PatternCatalog:
    """Read-only view of the known log templates used to ground query generation."""

    def __init__(self, gateway: StorageGateway):
        self._gateway = gateway

    def list_patterns(self) -> list[LogPattern]:
        try:
            return self._gateway.list_patterns()
        except StorageUnavailable as e:
            raise StorageUnavailable(f"Pattern catalog unavailable: {e}") from e
