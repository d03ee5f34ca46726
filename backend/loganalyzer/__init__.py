def __getattr__(name):
    if name == "QueryOrchestrator":
        from .orchestrator import QueryOrchestrator
        return QueryOrchestrator
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

__all__ = ['QueryOrchestrator']
