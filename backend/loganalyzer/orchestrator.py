"""
Question -> query -> records -> analysis pipeline.

Stages run strictly in sequence for one question:
START -> CREDENTIAL_RESOLVED -> PATTERNS_LOADED -> QUERY_GENERATED
      -> RECORDS_FETCHED -> ANALYSIS_GENERATED -> DONE
and any failure moves the run to FAILED with the component's error, which is
re-raised to the caller. Nothing is retried here; the gateway's one-shot
schema self-heal is the only retry in the pipeline.
"""

import asyncio
import time
from typing import Callable

from loganalyzer.agents.analysis_generator import AnalysisGenerator
from loganalyzer.agents.query_generator import QueryGenerator
from loganalyzer.catalog import PatternCatalog
from loganalyzer.errors import LogAnalyzerError, describe
from loganalyzer.models.schemas import PipelineStage, QueryResult
from loganalyzer.storage.base import StorageGateway
from loganalyzer.utils.logger import get_logger

logger = get_logger(__name__)


class QueryOrchestrator:
    """Runs the two-stage text-generation pipeline against an injected gateway."""

    def __init__(
        self,
        gateway: StorageGateway,
        catalog: PatternCatalog,
        query_generator: QueryGenerator,
        analysis_generator: AnalysisGenerator,
        credential_provider: Callable[[], str],
        max_records: int = 100,
    ):
        self.gateway = gateway
        self.catalog = catalog
        self.query_generator = query_generator
        self.analysis_generator = analysis_generator
        self._credential_provider = credential_provider
        self.max_records = max_records

    async def process_query(self, question: str) -> QueryResult:
        """Answer ``question``; raises the failing stage's LogAnalyzerError."""
        stage = PipelineStage.START
        start = time.monotonic()
        logger.info("Processing query", extra={
            "action": "process_query", "stage": stage.value,
            "backend": self.gateway.backend_name, "extra": {"question": question},
        })

        try:
            credential = await asyncio.to_thread(self._credential_provider)
            stage = self._advance(PipelineStage.CREDENTIAL_RESOLVED)

            patterns = await asyncio.to_thread(self.catalog.list_patterns)
            stage = self._advance(PipelineStage.PATTERNS_LOADED, patterns=len(patterns))

            query = await self.query_generator.generate_query(question, patterns, credential)
            stage = self._advance(PipelineStage.QUERY_GENERATED, query=query)

            records = await asyncio.to_thread(self.gateway.execute_log_query, query)
            if len(records) > self.max_records:
                records = records[:self.max_records]
            stage = self._advance(PipelineStage.RECORDS_FETCHED, records=len(records))

            analysis = await self.analysis_generator.analyze(question, records, credential)
            stage = self._advance(PipelineStage.ANALYSIS_GENERATED)
        except LogAnalyzerError as e:
            logger.error("Query pipeline failed", extra={
                "action": "process_query",
                "stage": PipelineStage.FAILED.value,
                "backend": self.gateway.backend_name,
                "duration_ms": round((time.monotonic() - start) * 1000),
                "extra": {"failed_after": stage.value, "error": type(e).__name__, "reason": describe(e)},
            })
            raise

        logger.info("Pipeline stage reached", extra={
            "action": "process_query", "stage": PipelineStage.DONE.value,
            "backend": self.gateway.backend_name,
            "duration_ms": round((time.monotonic() - start) * 1000),
            "tokens": self.token_usage(),
        })
        return QueryResult(analysis=analysis, records=records, query=query)

    def token_usage(self) -> dict:
        """Cumulative token usage per text-generation component."""
        return {
            generator.component: generator.get_token_usage().model_dump()
            for generator in (self.query_generator, self.analysis_generator)
        }

    def _advance(self, stage: PipelineStage, **details) -> PipelineStage:
        logger.info("Pipeline stage reached", extra={
            "action": "process_query", "stage": stage.value,
            "backend": self.gateway.backend_name, "extra": details or None,
        })
        return stage
