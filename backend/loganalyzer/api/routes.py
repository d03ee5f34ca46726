"""
HTTP routes.

Handlers only validate input, call the service layer and shape the response.
Storage-bound handlers are plain functions so FastAPI runs them in its
thread pool; the query pipeline is awaited.
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from loganalyzer.errors import (
    AnalysisGenerationFailed, CredentialMissing, LogAnalyzerError,
    QueryGenerationFailed, StorageUnavailable, UnsafeQueryError, describe,
)
from loganalyzer.models.schemas import LogPattern, LogRecord, utc_now
from loganalyzer.utils.logger import get_logger

from .models import (
    ApiKeyRequest, ApiKeyResponse, LogEntryRequest, PatternRequest,
    QueryRequest, QueryResponse,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api")

ERROR_STATUS = {
    CredentialMissing: 400,
    UnsafeQueryError: 422,
    QueryGenerationFailed: 502,
    AnalysisGenerationFailed: 502,
    StorageUnavailable: 503,
}


def get_services(request: Request):
    return request.app.state.services


def _status_for(exc: LogAnalyzerError) -> int:
    for exc_type, status in ERROR_STATUS.items():
        if isinstance(exc, exc_type):
            return status
    return 500


def _storage_guard(exc: StorageUnavailable) -> HTTPException:
    logger.error("Storage request failed", extra={"action": "crud", "extra": describe(exc)})
    return HTTPException(status_code=503, detail=describe(exc))


# =========================================================================
# QUERY PIPELINE
# =========================================================================

@router.post("/query", response_model=QueryResponse)
async def process_query(body: QueryRequest, services=Depends(get_services)):
    """Generate a query for the question, run it and analyse the result."""
    question = body.query.strip()
    if not question:
        raise HTTPException(status_code=400, detail="Query cannot be empty")

    try:
        result = await services.orchestrator.process_query(question)
    except LogAnalyzerError as e:
        return JSONResponse(
            status_code=_status_for(e),
            content={"analysis": f"Error processing query: {describe(e)}", "logs": None},
        )

    return QueryResponse(analysis=result.analysis, logs=result.records, sqlQuery=result.query)


# =========================================================================
# PATTERNS
# =========================================================================

@router.get("/patterns", response_model=list[LogPattern])
def list_patterns(services=Depends(get_services)):
    try:
        return services.gateway.list_patterns()
    except StorageUnavailable as e:
        raise _storage_guard(e)


@router.post("/patterns", response_model=LogPattern)
def create_pattern(body: PatternRequest, services=Depends(get_services)):
    try:
        return services.gateway.save_pattern(LogPattern(level=body.logLevel, template=body.logTemplate))
    except StorageUnavailable as e:
        raise _storage_guard(e)


@router.put("/patterns/{pattern_id}", response_model=LogPattern)
def update_pattern(pattern_id: int, body: PatternRequest, services=Depends(get_services)):
    try:
        return services.gateway.save_pattern(
            LogPattern(id=pattern_id, level=body.logLevel, template=body.logTemplate)
        )
    except StorageUnavailable as e:
        raise _storage_guard(e)


@router.delete("/patterns/{pattern_id}")
def delete_pattern(pattern_id: int, services=Depends(get_services)):
    try:
        services.gateway.delete_pattern(pattern_id)
    except StorageUnavailable as e:
        raise _storage_guard(e)
    return {"deleted": pattern_id}


# =========================================================================
# LOG ENTRIES
# =========================================================================

@router.get("/logs", response_model=list[LogRecord])
def list_logs(services=Depends(get_services)):
    try:
        return services.gateway.list_records()
    except StorageUnavailable as e:
        raise _storage_guard(e)


def _to_record(body: LogEntryRequest, record_id: int | None = None) -> LogRecord:
    return LogRecord(
        id=record_id,
        timestamp=body.timestamp or utc_now(),
        level=body.logLevel,
        message=body.message,
    )


@router.post("/logs", response_model=LogRecord)
def create_log(body: LogEntryRequest, services=Depends(get_services)):
    try:
        return services.gateway.save_record(_to_record(body))
    except StorageUnavailable as e:
        raise _storage_guard(e)


@router.put("/logs/{record_id}", response_model=LogRecord)
def update_log(record_id: int, body: LogEntryRequest, services=Depends(get_services)):
    try:
        return services.gateway.save_record(_to_record(body, record_id))
    except StorageUnavailable as e:
        raise _storage_guard(e)


@router.delete("/logs/{record_id}")
def delete_log(record_id: int, services=Depends(get_services)):
    try:
        services.gateway.delete_record(record_id)
    except StorageUnavailable as e:
        raise _storage_guard(e)
    return {"deleted": record_id}


# =========================================================================
# SETTINGS
# =========================================================================

@router.get("/settings/deepseek_api_key", response_model=ApiKeyResponse)
def get_api_key(services=Depends(get_services)):
    try:
        return ApiKeyResponse(apiKey=services.settings.masked_api_key())
    except StorageUnavailable as e:
        raise _storage_guard(e)


@router.post("/settings/deepseek_api_key")
def save_api_key(body: ApiKeyRequest, services=Depends(get_services)):
    try:
        services.settings.save_api_key(body.apiKey or "")
    except ValueError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})
    except StorageUnavailable as e:
        raise _storage_guard(e)
    return {"message": "API key saved successfully"}


# =========================================================================
# SYSTEM
# =========================================================================

@router.get("/health")
def health_check(services=Depends(get_services)):
    return {
        "status": "healthy",
        "backend": services.gateway.backend_name,
        "timestamp": utc_now().isoformat(),
    }
