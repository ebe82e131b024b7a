from __future__ import annotations

import re
from typing import Protocol


_DDL_DML_RE = re.compile(
    r"\b(INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|TRUNCATE|REPLACE|GRANT|REVOKE)\b",
    re.IGNORECASE,
)
_LEXEME_RE = re.compile(
    r"(?P<single>'(?:''|[^'])*')"
    r'|(?P<double>"(?:""|[^"])*")'
    r"|(?P<line>--[^\n]*)"
    r"|(?P<block>/\*[\s\S]*?\*/)"
)
_READ_PREFIX_RE = re.compile(r"^\s*(SELECT|WITH)\b", re.IGNORECASE)


def _mask_lexeme(match: re.Match[str]) -> str:
    if match.group("single") is not None:
        return "''"
    if match.group("double") is not None:
        return '""'
    return " "


def strip_comments_and_literals(sql: str) -> str:
    # One left-to-right pass: a `--` inside quotes belongs to the literal.
    # Empty quotes stay in place so token boundaries survive the rewrite.
    return _LEXEME_RE.sub(_mask_lexeme, sql)


def has_balanced_parentheses(sql: str) -> bool:
    depth = 0
    quote: str | None = None
    for char in sql:
        if quote is not None:
            if char == quote:
                quote = None
            continue
        if char in ("'", '"'):
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
            if depth < 0:
                return False
    return depth == 0 and quote is None


class QueryValidator(Protocol):
    def contains_ddl_dml(self, query: str) -> bool:
        ...

    def is_safe(self, query: str) -> tuple[bool, str | None]:
        ...


class SqlQueryValidator:
    """Static checks applied to LLM output before anything touches a client DB."""

    def contains_ddl_dml(self, query: str) -> bool:
        return bool(_DDL_DML_RE.search(strip_comments_and_literals(query)))

    def is_safe(self, query: str) -> tuple[bool, str | None]:
        if not query or not query.strip():
            return False, "query is empty"
        cleaned = strip_comments_and_literals(query)
        if _DDL_DML_RE.search(cleaned):
            return False, "query contains a DDL or DML statement"
        if not _READ_PREFIX_RE.match(cleaned):
            return False, "query must start with SELECT or WITH"
        if not has_balanced_parentheses(cleaned):
            return False, "query has unbalanced parentheses"
        return True, None
