from loganalyzer.agents.response_parser import Empty, extract_query
from loganalyzer.errors import QueryGenerationFailed
from loganalyzer.models.schemas import LogPattern, TokenUsage
from loganalyzer.storage.dialects import RECORD_COLUMNS, RECORDS_TABLE, SqlDialect
from loganalyzer.utils.llm_client import ChatCompletionClient, LLMCallError
from loganalyzer.utils.logger import get_logger, truncate

logger = get_logger(__name__)

SELECT_COLUMNS = ", ".join(RECORD_COLUMNS)


class QueryGenerator:
    """Turns a question plus known log templates into one retrieval query."""

    def __init__(self, llm_client: ChatCompletionClient, dialect: SqlDialect):
        self.component = "query_generator"
        self.llm_client = llm_client
        self.dialect = dialect

    async def generate_query(self, question: str, patterns: list[LogPattern], credential: str) -> str:
        """Ask the text-generation service for a query and extract it from the reply.

        Raises QueryGenerationFailed when the call fails or no query can be extracted.
        """
        prompt = self.build_prompt(question, patterns)
        try:
            response = await self.llm_client.chat(prompt, credential)
        except LLMCallError as e:
            raise QueryGenerationFailed(f"Failed to generate SQL query: {e}") from e

        extracted = extract_query(response.text)
        if isinstance(extracted, Empty):
            logger.warning("No query in model reply", extra={
                "component": self.component, "action": "extract_query",
                "extra": {"reason": extracted.reason, "response": truncate(response.text, 500)},
            })
            raise QueryGenerationFailed(f"Failed to generate SQL query: {extracted.reason}")

        logger.info("Query generated", extra={
            "component": self.component, "action": "query_generated",
            "extra": {"query": extracted.text, "patterns": len(patterns)},
        })
        return extracted.text

    def get_token_usage(self) -> TokenUsage:
        return self.llm_client.get_total_usage()

    def build_prompt(self, question: str, patterns: list[LogPattern]) -> str:
        d = self.dialect
        like = d.substring_match
        parts = [
            "[ROLE]",
            f"You are a lead systems analyst and SQL architect specialised in log analysis on {d.name}. "
            "You work autonomously: analyse the task, make reasonable assumptions about unclear requests "
            "and always return a query, even when the data is not enough for a perfect answer.",
            "",
            "[GOAL]",
            f"Turn the user's natural-language request into one correct, efficient, read-only SQL query "
            f"that finds the most relevant rows in the table {RECORDS_TABLE}.",
            "",
            "[CONTEXT]",
            f"Database: {d.name}",
            f"Table: {RECORDS_TABLE}",
            "Table structure:",
            d.table_definition,
            f"Dialect notes: {d.notes}",
            "",
            "[PRINCIPLES]",
            "- Build the query from the log templates below. Never invent columns, tables or message formats: "
            f"the only columns are {SELECT_COLUMNS}.",
            "- Read-only: produce exactly one SELECT (optionally starting with WITH). "
            "Statements that change data (INSERT, UPDATE, DELETE) or structure (CREATE, ALTER, DROP) are forbidden.",
            f"- Always select {SELECT_COLUMNS} and order by timestamp DESC.",
            "",
            "[STRATEGY]",
            "Step 1. Find the key entities in the request (ids, names, IPs) and the goal of the search. "
            "Find which templates mention them and how templates relate to each other "
            "(for example through requestId, traceId or sessionId).",
            f"Step 2. Direct search: when one log line carries everything needed, use WHERE message {like} '%text%'.",
            "Step 3. Correlated search: when attributes are logged on different lines (userId on the start line, "
            "the outcome on a completion line with only requestId), use a CTE (WITH ... AS (...) SELECT ...) "
            "to find the linking identifier first. Never require two attributes that are never logged together "
            f"on the same line (wrong: message {like} '%commId=X%' AND message {like} '%userId=Y%').",
            f"Step 4. Fallback: when the chain cannot be built or the request is vague, return every line that "
            f"mentions the main entity. To extract values use {d.extract_function}.",
            "",
            "[AMBIGUITY]",
            "- Never ask clarifying questions.",
            "- For general requests such as 'problems for user X', assume log_level IN ('ERROR', 'WARN') "
            "lines related to that entity.",
            "",
            "[RESPONSE FORMAT]",
            "Reply with the query in a single ```sql fenced block and nothing else inside the block. "
            "You may add one or two sentences of reasoning after the block.",
            "",
            "[EXAMPLES]",
            "Templates:",
            'INFO  "start send message for userName={} and id={}"',
            'INFO  "message send completed for id={}"',
            'ERROR "message send failed for id={}"',
            "Request: Was the message for user with id 111 sent?",
            "```sql",
            f"SELECT {SELECT_COLUMNS}",
            f"FROM {RECORDS_TABLE}",
            f"WHERE {d.match('message', 'id=111')}",
            "ORDER BY timestamp DESC",
            "```",
            "",
            "Templates:",
            'INFO  "User {} logged in from ip {}"',
            'ERROR "Database connection failed: {}"',
            "Request: What happened to user john_doe?",
            "```sql",
            f"SELECT {SELECT_COLUMNS}",
            f"FROM {RECORDS_TABLE}",
            f"WHERE ({d.match('message', 'john_doe')} AND log_level IN ('ERROR', 'WARN'))",
            f"   OR {d.match('message', 'User john_doe logged in')}",
            "ORDER BY timestamp DESC",
            "```",
            "",
            "[INPUT]",
            "User request:",
            question.strip(),
            "",
            "Log templates:",
        ]

        if patterns:
            for pattern in patterns:
                parts.append(f"{pattern.level:<5} {pattern.template}")
        else:
            parts.append(
                "(no templates are known; search the message column for the key terms of the request)"
            )

        return "\n".join(parts)
