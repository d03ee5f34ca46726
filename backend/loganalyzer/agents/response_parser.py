"""
Parsing of untrusted text-generation output.

Both generators receive free text. The query generator needs the interior of
a fenced code block (or the whole reply when there is none); the analysis
generator needs the ``analysis`` field of an embedded JSON object (or the
whole reply when there is none).
"""

import json
import re
from dataclasses import dataclass
from typing import Union

FENCE = "```"
# A language tag ends at the newline, or at whitespace when it is a known query tag
# written inline ("```sql SELECT 1```").
_FENCE_OPEN = re.compile(
    r"```(?:[ \t]*([A-Za-z0-9_+-]+)?[ \t]*\r?\n|[ \t]*((?i:sqlite|sql|clickhouse))[ \t]+)?"
)


@dataclass(frozen=True)
class Extracted:
    text: str


@dataclass(frozen=True)
class Empty:
    reason: str


ExtractionResult = Union[Extracted, Empty]


def _language(opening: re.Match) -> str:
    return (opening.group(1) or opening.group(2) or "").lower()


def _fenced_blocks(text: str):
    """Yield ``(language, interior)`` per fenced block; interior is None when unterminated."""
    pos = 0
    while True:
        opening = _FENCE_OPEN.search(text, pos)
        if opening is None:
            return
        closing = text.find(FENCE, opening.end())
        if closing == -1:
            yield _language(opening), None
            return
        yield _language(opening), text[opening.end():closing]
        pos = closing + len(FENCE)


def extract_query(response: str) -> ExtractionResult:
    """Pull a retrieval query out of a model reply.

    A block tagged ``sql`` wins, then the first fenced block; the interior is
    trimmed. An opening fence with no closing fence is ambiguous and yields
    Empty rather than a partial statement. Without any fence the trimmed reply
    is the query.
    """
    if response is None or not response.strip():
        return Empty("response was empty")

    blocks = list(_fenced_blocks(response))
    if not blocks:
        return Extracted(response.strip())

    chosen = next((b for b in blocks if b[0] == "sql"), blocks[0])
    language, interior = chosen
    if interior is None:
        return Empty(f"unterminated {language or 'code'} block")
    interior = interior.strip()
    if not interior:
        return Empty(f"{language or 'code'} block was empty")
    return Extracted(interior)


def extract_analysis(response: str) -> str:
    """Return the ``analysis`` field of the embedded JSON object, else the trimmed reply."""
    text = (response or "").strip()
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return text

    try:
        payload = json.loads(text[start:end + 1])
    except json.JSONDecodeError:
        return text

    if not isinstance(payload, dict):
        return text
    analysis = payload.get("analysis")
    if isinstance(analysis, str) and analysis.strip():
        return analysis.strip()
    if analysis is not None and not isinstance(analysis, str):
        return json.dumps(analysis, ensure_ascii=False)
    return text
