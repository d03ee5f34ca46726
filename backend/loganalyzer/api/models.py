"""
API Request/Response Models
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from loganalyzer.models.schemas import LogRecord, MAX_MESSAGE_LENGTH, MAX_TEMPLATE_LENGTH


class QueryRequest(BaseModel):
    query: str = Field(..., description="Natural-language question about the logs")


class QueryResponse(BaseModel):
    analysis: str
    logs: Optional[List[LogRecord]] = None
    sqlQuery: Optional[str] = Field(None, description="Generated retrieval query")


class PatternRequest(BaseModel):
    logLevel: str = Field(..., min_length=1, max_length=10)
    logTemplate: str = Field(..., min_length=1, max_length=MAX_TEMPLATE_LENGTH)


class LogEntryRequest(BaseModel):
    timestamp: Optional[datetime] = Field(None, description="Defaults to now")
    logLevel: str = Field(..., min_length=1, max_length=10)
    message: str = Field(..., max_length=MAX_MESSAGE_LENGTH)


class ApiKeyRequest(BaseModel):
    apiKey: Optional[str] = None


class ApiKeyResponse(BaseModel):
    apiKey: str
