"""
Read-only statement check applied before any generated query is executed.

This is not a SQL parser. It masks string literals, quoted identifiers and
comments, then requires exactly one statement that starts with SELECT or WITH
and contains no data- or schema-changing keyword.
"""

import re

from loganalyzer.errors import UnsafeQueryError

ALLOWED_LEADING_KEYWORDS = ("SELECT", "WITH")

FORBIDDEN_KEYWORDS = frozenset({
    "INSERT", "UPDATE", "DELETE", "UPSERT", "MERGE",
    "DROP", "CREATE", "ALTER", "TRUNCATE", "RENAME",
    "GRANT", "REVOKE", "ATTACH", "DETACH", "OPTIMIZE", "SYSTEM", "KILL",
    "PRAGMA", "VACUUM", "REINDEX", "INTO", "OUTFILE", "EXCHANGE", "UNDROP",
})

_LITERAL_OR_COMMENT = re.compile(
    r"""
      '(?:[^']|'')*'          # single-quoted string, '' escapes
    | "(?:[^"]|"")*"          # double-quoted identifier
    | `(?:[^`]|``)*`          # backtick identifier
    | --[^\n]*                # line comment
    | /\*.*?\*/               # block comment
    """,
    re.VERBOSE | re.DOTALL,
)
_WORD = re.compile(r"[A-Za-z_]+")


def _mask(query: str) -> str:
    def repl(match: re.Match) -> str:
        token = match.group(0)
        if token.startswith(("--", "/*")):
            return " "
        return "''"
    masked = _LITERAL_OR_COMMENT.sub(repl, query)
    if "'" in masked.replace("''", "") or '"' in masked or "`" in masked or "/*" in masked:
        raise UnsafeQueryError("Query contains an unterminated quote or comment")
    return masked


def _strip_comments(query: str) -> str:
    def repl(match: re.Match) -> str:
        token = match.group(0)
        return " " if token.startswith(("--", "/*")) else token
    return _LITERAL_OR_COMMENT.sub(repl, query)


def ensure_read_only(query: str) -> str:
    """Validate that ``query`` is one read-only retrieval statement.

    Returns the statement without comments or trailing semicolons, ready to
    execute. Raises UnsafeQueryError otherwise.
    """
    if query is None or not query.strip():
        raise UnsafeQueryError("Query is empty")

    body = _mask(query).strip().rstrip("; \t\r\n")
    if ";" in body:
        raise UnsafeQueryError("Only a single statement may be executed")

    words = [w.upper() for w in _WORD.findall(body)]
    if not words or words[0] not in ALLOWED_LEADING_KEYWORDS:
        leading = words[0] if words else "<none>"
        raise UnsafeQueryError(f"Only SELECT/WITH retrieval statements are allowed, got {leading}")

    forbidden = sorted(FORBIDDEN_KEYWORDS.intersection(words))
    if forbidden:
        raise UnsafeQueryError(f"Query contains forbidden keyword(s): {', '.join(forbidden)}")

    statement = _strip_comments(query).strip()
    while statement.endswith(";"):
        statement = statement[:-1].rstrip()
    return statement
