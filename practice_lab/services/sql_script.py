from __future__ import annotations

import re

QUOTE_CHARACTERS = ("'", '"', "`")

_NAME = r"""(?:"(?P<dq>[^"]+)"|`(?P<bt>[^`]+)`|\[(?P<br>[^\]]+)\]|(?P<bare>[A-Za-z_][\w$]*(?:\.[A-Za-z_][\w$]*)*))"""

TABLE_NAME_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(
        r"\bcreate\s+(?:or\s+replace\s+)?(?:(?:temp|temporary)\s+)?table\s+(?:if\s+not\s+exists\s+)?"
        + _NAME,
        re.IGNORECASE,
    ),
    re.compile(
        r"\bcreate\s+(?:or\s+replace\s+)?(?:(?:temp|temporary)\s+)?view\s+(?:if\s+not\s+exists\s+)?"
        + _NAME,
        re.IGNORECASE,
    ),
    re.compile(r"\binsert\s+(?:or\s+\w+\s+)?into\s+" + _NAME, re.IGNORECASE),
)


def split_statements(script: str | None) -> list[str]:
    """Split ``script`` on semicolons that sit outside quoted or backtick spans."""
    if not script:
        return []

    statements: list[str] = []
    buffer: list[str] = []
    quote: str | None = None
    for char in script:
        if quote is not None:
            buffer.append(char)
            # A doubled quote re-enters the same mode on the next character.
            if char == quote:
                quote = None
            continue
        if char in QUOTE_CHARACTERS:
            quote = char
            buffer.append(char)
            continue
        if char == ";":
            statement = "".join(buffer).strip()
            if statement:
                statements.append(statement)
            buffer = []
            continue
        buffer.append(char)

    tail = "".join(buffer).strip()
    if tail:
        statements.append(tail)
    return statements


def strip_comments(script: str | None) -> str:
    """Remove ``--`` line comments and ``/* */`` block comments outside quoted spans."""
    if not script:
        return ""

    output: list[str] = []
    quote: str | None = None
    index = 0
    length = len(script)
    while index < length:
        char = script[index]
        if quote is not None:
            output.append(char)
            if char == quote:
                quote = None
            index += 1
            continue
        if char in QUOTE_CHARACTERS:
            quote = char
            output.append(char)
            index += 1
            continue
        if script.startswith("--", index):
            newline = script.find("\n", index)
            index = length if newline == -1 else newline
            continue
        if script.startswith("/*", index):
            end = script.find("*/", index + 2)
            index = length if end == -1 else end + 2
            output.append(" ")
            continue
        output.append(char)
        index += 1
    return "".join(output)


def _captured_name(match: re.Match[str]) -> str | None:
    for group in ("dq", "bt", "br"):
        value = match.group(group)
        if value:
            return value.strip()
    bare = match.group("bare")
    if not bare:
        return None
    return bare.split(".")[-1]


def extract_table_names(script: str | None) -> list[str]:
    """Names of the tables and views a setup script creates or populates, in first-seen order."""
    names: list[str] = []
    seen: set[str] = set()
    for statement in split_statements(strip_comments(script)):
        for pattern in TABLE_NAME_PATTERNS:
            for match in pattern.finditer(statement):
                name = _captured_name(match)
                if name and name not in seen:
                    seen.add(name)
                    names.append(name)
    return names


def collapse_whitespace(script: str | None) -> str:
    return " ".join((script or "").split())
