from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

MAX_MESSAGE_LENGTH = 2000
MAX_TEMPLATE_LENGTH = 500
MAX_SETTING_VALUE_LENGTH = 1000


def to_utc(value: datetime) -> datetime:
    """Naive UTC, whole seconds. Naive input is taken to be UTC already."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=0)


def utc_now() -> datetime:
    return to_utc(datetime.now(timezone.utc))


class LogRecord(BaseModel):
    """One persisted log line. Ids are assigned by (and local to) the backing store."""
    model_config = {"populate_by_name": True}

    id: Optional[int] = None
    timestamp: datetime
    level: str = Field(alias="logLevel", min_length=1, max_length=10)
    message: str = Field(max_length=MAX_MESSAGE_LENGTH)

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return to_utc(value)


class LogPattern(BaseModel):
    """A known message template, e.g. ``message send completed for id={}``."""
    model_config = {"populate_by_name": True}

    id: Optional[int] = None
    level: str = Field(alias="logLevel", min_length=1, max_length=10)
    template: str = Field(alias="logTemplate", min_length=1, max_length=MAX_TEMPLATE_LENGTH)


class Setting(BaseModel):
    id: Optional[int] = None
    key: str = Field(min_length=1, max_length=255)
    value: str = Field(max_length=MAX_SETTING_VALUE_LENGTH)


class QueryResult(BaseModel):
    """Terminal artifact of one pipeline run; never persisted."""
    analysis: str
    records: list[LogRecord] = Field(default_factory=list)
    query: str = ""


class PipelineStage(str, Enum):
    START = "start"
    CREDENTIAL_RESOLVED = "credential_resolved"
    PATTERNS_LOADED = "patterns_loaded"
    QUERY_GENERATED = "query_generated"
    RECORDS_FETCHED = "records_fetched"
    ANALYSIS_GENERATED = "analysis_generated"
    DONE = "done"
    FAILED = "failed"


class TokenUsage(BaseModel):
    component: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
