"""
Error taxonomy for the question -> query -> analysis pipeline.

Every failure is per request: components raise one of these, chaining the
underlying transport/parse/storage exception with ``raise ... from exc``.
"""


class LogAnalyzerError(Exception):
    """Base class for all pipeline failures."""


class CredentialMissing(LogAnalyzerError):
    """No usable text-generation credential is configured."""


class QueryGenerationFailed(LogAnalyzerError):
    """The text-generation call failed or produced no usable query."""


class StorageUnavailable(LogAnalyzerError):
    """The storage backend could not serve the operation."""


class UnsafeQueryError(LogAnalyzerError):
    """A retrieval query was rejected because it is not a single read-only statement."""


class AnalysisGenerationFailed(LogAnalyzerError):
    """The text-generation call for the analysis failed."""


def describe(exc: BaseException) -> str:
    """Render an exception and its cause chain as one readable line."""
    parts = []
    seen = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        text = str(current) or type(current).__name__
        if not parts or text not in parts[-1]:
            parts.append(text)
        current = current.__cause__
    return ": ".join(parts)
