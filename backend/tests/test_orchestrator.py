import json
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from loganalyzer.agents import AnalysisGenerator, QueryGenerator
from loganalyzer.catalog import PatternCatalog
from loganalyzer.errors import (
    AnalysisGenerationFailed, CredentialMissing, QueryGenerationFailed,
    StorageUnavailable, UnsafeQueryError, describe,
)
from loganalyzer.models.schemas import LogPattern, PipelineStage, TokenUsage
from loganalyzer.orchestrator import QueryOrchestrator
from loganalyzer.utils.llm_client import ChatCompletionClient

from conftest import completion, make_record

QUERY_111 = (
    "SELECT id, timestamp, log_level, message FROM log_entries "
    "WHERE message LIKE '%id=111%' ORDER BY timestamp DESC"
)


def _orchestrator(gateway, query_generator=None, analysis_generator=None,
                  credential_provider=lambda: "sk-test", max_records=100):
    return QueryOrchestrator(
        gateway=gateway,
        catalog=PatternCatalog(gateway),
        query_generator=query_generator or _query_generator(),
        analysis_generator=analysis_generator or _analysis_generator(),
        credential_provider=credential_provider,
        max_records=max_records,
    )


def _generator(component):
    generator = AsyncMock()
    generator.component = component
    generator.get_token_usage = MagicMock(return_value=TokenUsage(component=component))
    return generator


def _query_generator(query=QUERY_111):
    generator = _generator("query_generator")
    generator.generate_query.return_value = query
    return generator


def _analysis_generator(text="analysis"):
    generator = _generator("analysis_generator")
    generator.analyze.return_value = text
    return generator


@pytest.mark.asyncio
async def test_message_sent_end_to_end(message_log):
    for level, template in [
        ("INFO", "start send message for userName={} and id={}"),
        ("INFO", "message send completed for id={}"),
        ("ERROR", "message send failed for id={}"),
    ]:
        message_log.save_pattern(LogPattern(level=level, template=template))

    prompts = []

    def handler(request: httpx.Request) -> httpx.Response:
        prompt = json.loads(request.content)["messages"][0]["content"]
        prompts.append(prompt)
        if len(prompts) == 1:
            return httpx.Response(200, json=completion(f"```sql\n{QUERY_111}\n```"))
        return httpx.Response(200, json=completion(json.dumps({
            "analysis": "The message for user 111 was sent successfully.",
            "relevant_logs": ["message send completed for id=111"],
        })))

    transport = httpx.MockTransport(handler)
    orchestrator = _orchestrator(
        message_log,
        query_generator=QueryGenerator(ChatCompletionClient("query_generator", transport=transport),
                                       message_log.dialect),
        analysis_generator=AnalysisGenerator(ChatCompletionClient("analysis_generator", transport=transport)),
    )

    result = await orchestrator.process_query("Was the message for user with id 111 sent?")

    assert result.query == QUERY_111
    assert result.analysis == "The message for user 111 was sent successfully."
    assert [r.message for r in result.records] == [
        "message send completed for id=111",
        "start send message for userName=bob and id=111",
    ]
    assert len(prompts) == 2
    assert "message send completed for id={}" in prompts[0]
    assert "] INFO: message send completed for id=111" in prompts[1]
    assert "id=222" not in prompts[1]
    assert orchestrator.query_generator.get_token_usage().total_tokens == 15
    assert orchestrator.token_usage() == {
        "query_generator": {"component": "query_generator", "input_tokens": 10, "output_tokens": 5, "total_tokens": 15},
        "analysis_generator": {
            "component": "analysis_generator", "input_tokens": 10, "output_tokens": 5, "total_tokens": 15,
        },
    }


@pytest.mark.asyncio
async def test_failed_message_is_reported_from_a_single_pattern():
    question = "did message for id=111 send?"
    gateway = MagicMock()
    gateway.backend_name = "stub"
    gateway.list_patterns.return_value = [LogPattern(level="INFO", template="message send completed for id={}")]
    gateway.execute_log_query.return_value = [make_record("message send failed for id=111", level="ERROR")]
    query_generator = _query_generator()
    analysis_generator = _analysis_generator("The message for id=111 failed to send.")

    result = await _orchestrator(gateway, query_generator, analysis_generator).process_query(question)

    assert len(result.records) == 1
    assert result.records[0].level == "ERROR"
    assert result.analysis
    assert query_generator.generate_query.await_args.args[1] == gateway.list_patterns.return_value
    gateway.execute_log_query.assert_called_once_with(QUERY_111)
    assert analysis_generator.analyze.await_args.args[0] == question


@pytest.mark.asyncio
async def test_missing_credential_stops_before_any_generation(sqlite_gateway):
    query_generator = _query_generator()
    analysis_generator = _analysis_generator()

    def no_credential():
        raise CredentialMissing("DeepSeek API key not configured. Please set it in Settings.")

    orchestrator = _orchestrator(sqlite_gateway, query_generator, analysis_generator, no_credential)

    with pytest.raises(CredentialMissing):
        await orchestrator.process_query("anything")
    query_generator.generate_query.assert_not_awaited()
    analysis_generator.analyze.assert_not_awaited()


@pytest.mark.asyncio
async def test_credential_reaches_both_generators(message_log):
    query_generator = _query_generator()
    analysis_generator = _analysis_generator()
    orchestrator = _orchestrator(message_log, query_generator, analysis_generator, lambda: "sk-live")

    await orchestrator.process_query("Was id 111 sent?")

    assert query_generator.generate_query.await_args.args[2] == "sk-live"
    assert analysis_generator.analyze.await_args.args[2] == "sk-live"


@pytest.mark.asyncio
async def test_query_failure_skips_storage_and_analysis(message_log):
    query_generator = AsyncMock()
    query_generator.generate_query.side_effect = QueryGenerationFailed("Failed to generate SQL query: HTTP 500")
    gateway = MagicMock(wraps=message_log)
    gateway.backend_name = message_log.backend_name
    analysis_generator = _analysis_generator()

    with pytest.raises(QueryGenerationFailed):
        await _orchestrator(gateway, query_generator, analysis_generator).process_query("q")
    gateway.execute_log_query.assert_not_called()
    analysis_generator.analyze.assert_not_awaited()


@pytest.mark.asyncio
async def test_unsafe_query_is_not_executed(message_log):
    analysis_generator = _analysis_generator()
    orchestrator = _orchestrator(message_log, _query_generator("DELETE FROM log_entries"), analysis_generator)

    with pytest.raises(UnsafeQueryError):
        await orchestrator.process_query("delete everything")
    assert len(message_log.list_records()) == 4
    analysis_generator.analyze.assert_not_awaited()


@pytest.mark.asyncio
async def test_empty_result_is_still_analyzed(message_log):
    query = "SELECT id, timestamp, log_level, message FROM log_entries WHERE message LIKE '%id=999%'"
    analysis_generator = _analysis_generator("No logs mention id 999.")
    orchestrator = _orchestrator(message_log, _query_generator(query), analysis_generator)

    result = await orchestrator.process_query("Was id 999 sent?")

    assert result.records == []
    assert result.analysis == "No logs mention id 999."
    assert analysis_generator.analyze.await_args.args[1] == []


@pytest.mark.asyncio
async def test_records_are_capped(message_log):
    query = "SELECT id, timestamp, log_level, message FROM log_entries ORDER BY timestamp DESC"
    analysis_generator = _analysis_generator()
    orchestrator = _orchestrator(message_log, _query_generator(query), analysis_generator, max_records=2)

    result = await orchestrator.process_query("everything")

    assert len(result.records) == 2
    assert len(analysis_generator.analyze.await_args.args[1]) == 2


@pytest.mark.asyncio
async def test_analysis_failure_propagates(message_log):
    analysis_generator = AsyncMock()
    analysis_generator.analyze.side_effect = AnalysisGenerationFailed("Failed to analyze logs: HTTP 503")
    orchestrator = _orchestrator(message_log, _query_generator(), analysis_generator)

    with pytest.raises(AnalysisGenerationFailed, match="HTTP 503"):
        await orchestrator.process_query("q")


@pytest.mark.asyncio
async def test_catalog_outage_is_storage_unavailable(sqlite_gateway):
    sqlite_gateway.close()
    query_generator = _query_generator()
    orchestrator = _orchestrator(sqlite_gateway, query_generator)

    with pytest.raises(StorageUnavailable, match="Pattern catalog unavailable"):
        await orchestrator.process_query("q")
    query_generator.generate_query.assert_not_awaited()


def test_describe_renders_cause_chain():
    try:
        try:
            raise ConnectionError("connection refused")
        except ConnectionError as e:
            raise StorageUnavailable("list_patterns failed on sqlite") from e
    except StorageUnavailable as e:
        assert describe(e) == "list_patterns failed on sqlite: connection refused"


@pytest.mark.asyncio
async def test_done_stage_reports_token_usage(message_log):
    orchestrator = _orchestrator(message_log)

    with patch("loganalyzer.orchestrator.logger") as log:
        await orchestrator.process_query("Was id 111 sent?")

    done = [c.kwargs["extra"] for c in log.info.call_args_list
            if c.kwargs["extra"]["stage"] == PipelineStage.DONE.value]
    assert len(done) == 1
    assert set(done[0]["tokens"]) == {"query_generator", "analysis_generator"}
    assert done[0]["duration_ms"] >= 0
