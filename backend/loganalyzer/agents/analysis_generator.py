from loganalyzer.agents.response_parser import extract_analysis
from loganalyzer.errors import AnalysisGenerationFailed
from loganalyzer.models.schemas import LogRecord, TokenUsage
from loganalyzer.utils.llm_client import ChatCompletionClient, LLMCallError
from loganalyzer.utils.logger import get_logger

logger = get_logger(__name__)


class AnalysisGenerator:
    """Explains retrieved log records in the context of the user's question."""

    def __init__(self, llm_client: ChatCompletionClient):
        self.component = "analysis_generator"
        self.llm_client = llm_client

    async def analyze(self, question: str, records: list[LogRecord], credential: str) -> str:
        """Return a human-readable analysis.

        Records are rendered in the order given. A reply without a usable JSON
        payload is returned as plain text; only a failed call (or an empty
        completion) raises AnalysisGenerationFailed.
        """
        prompt = self.build_prompt(question, records)
        try:
            response = await self.llm_client.chat(prompt, credential)
        except LLMCallError as e:
            raise AnalysisGenerationFailed(f"Failed to analyze logs: {e}") from e

        analysis = extract_analysis(response.text)
        if not analysis:
            raise AnalysisGenerationFailed("Failed to analyze logs: the model returned an empty completion")

        logger.info("Analysis generated", extra={
            "component": self.component, "action": "analysis_generated",
            "extra": {"records": len(records), "chars": len(analysis)},
        })
        return analysis

    def get_token_usage(self) -> TokenUsage:
        return self.llm_client.get_total_usage()

    @staticmethod
    def render_record(record: LogRecord) -> str:
        return f"[{record.timestamp.isoformat(sep=' ', timespec='seconds')}] {record.level}: {record.message}"

    def build_prompt(self, question: str, records: list[LogRecord]) -> str:
        parts = [
            "You are a senior DevOps engineer experienced in log analysis.",
            "Analyse the logs in the context of the user's request:",
            "- Timing patterns and correlations",
            "- Sequences of events",
            "- Severity levels and escalations",
            "- Which of the logs are actually relevant to the request",
            "",
            f'User request: "{question.strip()}"',
            "",
            "Logs found:",
        ]
        if records:
            parts.extend(self.render_record(r) for r in records)
        else:
            parts.append("(no matching logs were found)")

        parts.append("")
        parts.append(
            'Return JSON: { "analysis": "explanation for a human", '
            '"relevant_logs": [array of the relevant log lines] }'
        )
        return "\n".join(parts)
