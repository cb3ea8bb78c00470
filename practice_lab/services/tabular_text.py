from __future__ import annotations

import csv
import io
import re

from practice_lab.utils.constants import SETUP_SCRIPT_KEYWORDS

COMMENT_LINE_PATTERN = re.compile(r"^\s*(//|--|#)")
SCRIPT_KEYWORD_PATTERN = re.compile(
    r"^\s*(" + "|".join(SETUP_SCRIPT_KEYWORDS) + r")\b",
    re.IGNORECASE,
)
ASSIGNMENT_PREFIX_PATTERN = re.compile(r"^\s*[A-Za-z_][A-Za-z0-9_]*\s*=\s*")
TRIPLE_QUOTE_PATTERN = re.compile(r"^[rRbBuUfF]?(\"\"\"|''')")
TERMINATOR_LINE_PATTERN = re.compile(r"^\s*(\"\"\"|''')?\s*[);]*\s*$")


def _split_cells(line: str) -> list[str]:
    try:
        return next(csv.reader([line]), [])
    except csv.Error:
        return line.split(",")


def extract_table(text: str | None) -> str | None:
    """Return the delimited table embedded in ``text`` or None when there is none.

    Leading blank and comment lines are skipped. A leading line that reads like a
    setup script means the blob is a script, not a table. After the header every
    non-blank line is kept as data.
    """
    if not text:
        return None

    accepted: list[str] = []
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if accepted:
            accepted.append(line)
            continue
        if COMMENT_LINE_PATTERN.match(line):
            continue
        if SCRIPT_KEYWORD_PATTERN.match(line):
            return None
        if len(_split_cells(_clean_header_line(line))) > 1:
            accepted.append(line)

    meaningful = [line for line in accepted if not _is_terminator(line)]
    if len(meaningful) < 2:
        return None
    return "\n".join(accepted)


def _clean_header_line(line: str) -> str:
    cleaned = ASSIGNMENT_PREFIX_PATTERN.sub("", line, count=1)
    return TRIPLE_QUOTE_PATTERN.sub("", cleaned.lstrip(), count=1)


def _clean_header_cell(cell: str) -> str:
    cleaned = ASSIGNMENT_PREFIX_PATTERN.sub("", cell.strip(), count=1)
    cleaned = TRIPLE_QUOTE_PATTERN.sub("", cleaned, count=1)
    return cleaned.replace('"""', "").replace("'''", "").strip()


def _is_terminator(line: str) -> bool:
    stripped = line.strip()
    return not stripped or bool(TERMINATOR_LINE_PATTERN.match(stripped))


def _unique_headers(cells: list[str]) -> list[str]:
    headers: list[str] = []
    seen: dict[str, int] = {}
    for index, cell in enumerate(cells):
        name = cell.strip() or f"column_{index + 1}"
        count = seen.get(name, 0)
        seen[name] = count + 1
        headers.append(name if count == 0 else f"{name}_{count + 1}")
    return headers


def parse_rows(csv_text: str | None) -> list[dict[str, str | None]]:
    """Parse RFC4180-style delimited text into rows keyed by the header cells."""
    if not csv_text:
        return []

    lines = [line for line in csv_text.splitlines() if not _is_terminator(line)]
    if not lines:
        return []
    lines[0] = _clean_header_line(lines[0])

    reader = csv.reader(io.StringIO("\n".join(lines)), skipinitialspace=True)
    try:
        header_cells = next(reader)
    except StopIteration:
        return []
    if header_cells:
        header_cells[0] = _clean_header_cell(header_cells[0])
    headers = _unique_headers([cell.strip() for cell in header_cells])

    rows: list[dict[str, str | None]] = []
    for values in reader:
        if not values or all(not value.strip() for value in values):
            continue
        row: dict[str, str | None] = {}
        for index, header in enumerate(headers):
            row[header] = values[index].strip() if index < len(values) else None
        rows.append(row)
    return rows
