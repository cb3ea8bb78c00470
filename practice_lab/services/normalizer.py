from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Mapping, Sequence
from typing import Any

from practice_lab.services.dataset_models import DatasetRecord, Row, SubjectType
from practice_lab.services.sql_script import collapse_whitespace, extract_table_names, strip_comments
from practice_lab.services.tabular_text import extract_table, parse_rows
from practice_lab.utils.constants import (
    PYTHON_QUESTION_TYPES,
    SETUP_SCRIPT_KEYWORDS,
    SQL_QUESTION_TYPES,
)
from practice_lab.utils.logging import get_logger, log_event

LOGGER = get_logger(__name__)

# Ordered aliases per canonical field; the first non-empty value wins. Dotted
# entries reach into nested objects such as ``schema_info``.
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "id": ("id", "dataset_id", "datasetId", "uuid"),
    "name": ("name", "title", "label", "dataset_name", "datasetName", "display_name"),
    "description": (
        "description",
        "dataset_description",
        "summary",
        "details",
        "schema_info.description",
    ),
    "creation_sql": (
        "create_sql",
        "creation_sql",
        "createSql",
        "creationSql",
        "setup_sql",
        "sql",
        "schema_info.create_sql",
        "schema_info.creation_sql",
    ),
    "creation_python": (
        "create_python",
        "creation_python",
        "createPython",
        "creationPython",
        "setup_python",
        "schema_info.create_python",
        "schema_info.creation_python",
    ),
    "raw_csv": (
        "dataset_csv_raw",
        "datasetCsvRaw",
        "csv_raw",
        "raw_csv",
        "csv",
        "schema_info.dataset_csv_raw",
        "schema_info.csv",
    ),
    "columns": ("columns", "column_names", "headers", "schema_info.columns", "schema"),
    "rows": (
        "data",
        "rows",
        "records",
        "sample_data",
        "data_preview",
        "schema_info.sample_data",
        "schema_info.data",
        "schema_info.rows",
    ),
    "table_name": ("table_name", "tableName", "schema_info.table_name"),
    "table_names": ("table_names", "tableNames", "tables", "schema_info.tables"),
    "subject_type": ("subject_type", "subjectType", "question_type", "type", "language"),
}

QUESTION_ID_ALIASES: tuple[str, ...] = ("id", "question_id", "questionId")
QUESTION_TEXT_ALIASES: tuple[str, ...] = (
    "text",
    "question_text",
    "questionText",
    "business_question",
    "prompt",
    "content.text",
)
QUESTION_TYPE_ALIASES: tuple[str, ...] = (
    "type",
    "question_type",
    "questionType",
    "language",
    "subject_type",
)

# (field, subject hint, accept description-only records)
QUESTION_DATASET_FIELDS: tuple[tuple[str, SubjectType | None, bool], ...] = (
    ("dataset", None, True),
    ("datasets", None, True),
    ("exerciseDataset", None, True),
    ("exercise_dataset", None, True),
    ("exercisePythonDataset", SubjectType.PYTHON, True),
    ("exercise_python_dataset", SubjectType.PYTHON, True),
    ("context", None, False),
    ("sample_data", None, False),
)

FENCE_LINE_PATTERN = re.compile(r"^\s*```[\w+-]*\s*$")
STATEMENT_START_PATTERN = re.compile(
    r"(?:^|[;\n])\s*(" + "|".join(SETUP_SCRIPT_KEYWORDS) + r")\b",
    re.IGNORECASE,
)
PYTHON_HINT_PATTERN = re.compile(r"(^|\n)\s*(import |from \w+ import |[A-Za-z_]\w*\s*=)")
DESCRIPTOR_KEYS = frozenset(
    alias.split(".")[0]
    for field_name in ("creation_sql", "creation_python", "raw_csv", "columns", "rows", "table_name", "table_names")
    for alias in FIELD_ALIASES[field_name]
)


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def _maybe_json(value: Any) -> Any:
    if isinstance(value, str) and value.strip()[:1] in {"{", "["}:
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


def _lookup(payload: Mapping[str, Any], path: str) -> Any:
    current: Any = payload
    parts = path.split(".")
    for index, part in enumerate(parts):
        if index > 0:
            current = _maybe_json(current)
        if not isinstance(current, Mapping):
            return None
        current = current.get(part)
    return current


def coalesce(payload: Mapping[str, Any], aliases: Sequence[str]) -> Any:
    """Return the first non-empty value among ``aliases``."""
    for alias in aliases:
        value = _lookup(payload, alias)
        if not _is_empty(value):
            return value
    return None


def strip_code_fences(text: str) -> str:
    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    return "\n".join(line for line in lines if not FENCE_LINE_PATTERN.match(line))


def normalize_sql_script(text: Any) -> str | None:
    """Collapse an analytical setup script: trimmed lines, no blank lines."""
    if not isinstance(text, str):
        return None
    lines = [line.strip() for line in strip_code_fences(text).split("\n")]
    collapsed = "\n".join(line for line in lines if line)
    return collapsed or None


def normalize_python_script(text: Any) -> str | None:
    """Interpreter setup scripts keep their indentation; only fences and line endings change."""
    if not isinstance(text, str):
        return None
    script = strip_code_fences(text)
    if not script.strip():
        return None
    return script


def looks_like_setup_script(text: str) -> bool:
    """Statement-shaped text: a leading keyword plus a known DDL/DML target or a terminator."""
    stripped = strip_comments(text)
    if not STATEMENT_START_PATTERN.search(stripped):
        return False
    return bool(extract_table_names(stripped)) or ";" in stripped


def looks_like_python(text: str) -> bool:
    return bool(PYTHON_HINT_PATTERN.search(text))


def resolve_subject_type(value: Any) -> SubjectType:
    if isinstance(value, SubjectType):
        return value
    if not isinstance(value, str):
        return SubjectType.UNKNOWN
    lowered = value.strip().lower()
    if lowered in SQL_QUESTION_TYPES:
        return SubjectType.SQL
    if lowered in PYTHON_QUESTION_TYPES:
        return SubjectType.PYTHON
    return SubjectType.UNKNOWN


def _digest(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]


def derive_dataset_key(
    *,
    source_id: str | None,
    table_name: str | None,
    creation_sql: str | None,
    creation_python: str | None = None,
    columns: Sequence[str] = (),
    rows: Sequence[Row] = (),
    raw_csv: str | None = None,
    fallback: str | None = None,
) -> str:
    """Content signature: explicit id, then table name, then normalized script text."""
    if source_id:
        return str(source_id)
    if table_name:
        return f"table:{table_name.strip().lower()}"
    if creation_sql:
        return f"sql:{_digest(collapse_whitespace(creation_sql))}"
    if creation_python:
        return f"python:{_digest(collapse_whitespace(creation_python))}"
    if rows or columns:
        body = json.dumps({"columns": list(columns), "rows": list(rows)}, sort_keys=True, default=str)
        return f"rows:{_digest(body)}"
    if raw_csv:
        return f"csv:{_digest(collapse_whitespace(raw_csv))}"
    return f"text:{_digest(collapse_whitespace(fallback or ''))}"


def dataset_engine_key(record: DatasetRecord) -> str:
    return derive_dataset_key(
        source_id=record.source_id,
        table_name=record.table_name,
        creation_sql=record.creation_sql,
        creation_python=record.creation_python,
        columns=record.columns,
        rows=record.rows,
        raw_csv=record.raw_csv,
        fallback=record.description or record.name,
    )


def _column_names(value: Any) -> list[str]:
    value = _maybe_json(value)
    if isinstance(value, Mapping):
        # {"columns": [...]} or {"name": "type", ...}
        nested = value.get("columns")
        if isinstance(nested, list):
            return _column_names(nested)
        return [str(key) for key in value]
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if not isinstance(value, (list, tuple)):
        return []
    names: list[str] = []
    for entry in value:
        if isinstance(entry, Mapping):
            name = coalesce(entry, ("name", "column_name", "columnName", "field", "key"))
            if name is not None:
                names.append(str(name))
        elif entry is not None and str(entry).strip():
            names.append(str(entry).strip())
    return names


def _coerce_rows(value: Any, columns: list[str]) -> list[Row]:
    value = _maybe_json(value)
    if not isinstance(value, (list, tuple)):
        return []
    rows: list[Row] = []
    for entry in value:
        if isinstance(entry, Mapping):
            rows.append({str(key): cell for key, cell in entry.items()})
        elif isinstance(entry, (list, tuple)):
            names = columns or [f"column_{index + 1}" for index in range(len(entry))]
            row: Row = {}
            for index, cell in enumerate(entry):
                key = names[index] if index < len(names) else f"column_{index + 1}"
                row[key] = cell
            rows.append(row)
    return rows


def _string_list(value: Any) -> list[str]:
    value = _maybe_json(value)
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if isinstance(value, (list, tuple)):
        names: list[str] = []
        for entry in value:
            if isinstance(entry, Mapping):
                entry = coalesce(entry, ("name", "table_name", "tableName"))
            if entry is not None and str(entry).strip():
                names.append(str(entry).strip())
        return names
    return []


def _text(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _build_record(
    *,
    source_id: str | None,
    name: str | None,
    description: str | None,
    creation_sql: str | None,
    creation_python: str | None,
    columns: list[str],
    rows: list[Row],
    raw_csv: str | None,
    table_name: str | None,
    table_names: list[str],
    subject_type: SubjectType,
    fallback_name: str | None,
) -> DatasetRecord | None:
    if not any((rows, columns, creation_sql, creation_python, raw_csv, table_name, table_names, description)):
        return None

    if not table_names and creation_sql:
        table_names = extract_table_names(creation_sql)
    if not columns and rows:
        columns = list(rows[0].keys())

    display_name = name or table_name or (table_names[0] if table_names else None) or fallback_name or "Dataset"
    record = DatasetRecord(
        id="",
        name=display_name,
        source_id=source_id,
        description=description,
        creation_sql=creation_sql,
        creation_python=creation_python,
        columns=columns,
        rows=rows,
        raw_csv=raw_csv,
        table_name=table_name,
        table_names=table_names,
        subject_type=subject_type,
    )
    record.id = dataset_engine_key(record)
    return record


def _normalize_text(
    text: str,
    *,
    fallback_name: str | None,
    subject_type: SubjectType,
) -> DatasetRecord | None:
    cleaned = strip_code_fences(text).strip()
    if not cleaned:
        return None

    creation_sql: str | None = None
    creation_python: str | None = None
    description: str | None = None
    rows: list[Row] = []

    raw_csv = extract_table(cleaned)
    if raw_csv is not None:
        rows = parse_rows(raw_csv)
    elif subject_type is SubjectType.PYTHON and looks_like_python(cleaned):
        creation_python = normalize_python_script(text)
    elif looks_like_setup_script(cleaned):
        creation_sql = normalize_sql_script(cleaned)
    elif looks_like_python(cleaned) and subject_type is not SubjectType.SQL:
        creation_python = normalize_python_script(text)
    else:
        description = cleaned

    return _build_record(
        source_id=None,
        name=None,
        description=description,
        creation_sql=creation_sql,
        creation_python=creation_python,
        columns=[],
        rows=rows,
        raw_csv=raw_csv,
        table_name=None,
        table_names=[],
        subject_type=subject_type,
        fallback_name=fallback_name,
    )


def _normalize_mapping(
    payload: Mapping[str, Any],
    *,
    fallback_name: str | None,
    subject_type: SubjectType,
) -> DatasetRecord | None:
    declared_subject = resolve_subject_type(coalesce(payload, FIELD_ALIASES["subject_type"]))
    if declared_subject is not SubjectType.UNKNOWN:
        subject_type = declared_subject

    creation_sql = normalize_sql_script(coalesce(payload, FIELD_ALIASES["creation_sql"]))
    creation_python = normalize_python_script(coalesce(payload, FIELD_ALIASES["creation_python"]))

    raw_csv: str | None = None
    raw_value = coalesce(payload, FIELD_ALIASES["raw_csv"])
    if isinstance(raw_value, str):
        raw_csv = extract_table(strip_code_fences(raw_value))

    columns = _column_names(coalesce(payload, FIELD_ALIASES["columns"]))

    rows_value = _maybe_json(coalesce(payload, FIELD_ALIASES["rows"]))
    rows: list[Row] = []
    if isinstance(rows_value, str):
        # Row fields sometimes carry the table as text or the setup script itself.
        text_table = extract_table(strip_code_fences(rows_value))
        if text_table is not None and raw_csv is None:
            raw_csv = text_table
        elif text_table is None and creation_sql is None and looks_like_setup_script(rows_value):
            creation_sql = normalize_sql_script(rows_value)
    else:
        rows = _coerce_rows(rows_value, columns)

    if not rows and raw_csv:
        rows = parse_rows(raw_csv)

    raw_id = coalesce(payload, FIELD_ALIASES["id"])
    table_name = _text(coalesce(payload, FIELD_ALIASES["table_name"]))
    return _build_record(
        source_id=str(raw_id) if raw_id is not None else None,
        name=_text(coalesce(payload, FIELD_ALIASES["name"])),
        description=_text(coalesce(payload, FIELD_ALIASES["description"])),
        creation_sql=creation_sql,
        creation_python=creation_python,
        columns=columns,
        rows=rows,
        raw_csv=raw_csv,
        table_name=table_name,
        table_names=_string_list(coalesce(payload, FIELD_ALIASES["table_names"])),
        subject_type=subject_type,
        fallback_name=fallback_name,
    )


def normalize(
    descriptor: Any,
    *,
    fallback_name: str | None = None,
    subject_type: SubjectType | str | None = None,
) -> DatasetRecord | None:
    """Reduce any tolerated descriptor shape to a DatasetRecord, or None when nothing is usable."""
    subject = resolve_subject_type(subject_type)
    descriptor = _maybe_json(descriptor)

    if descriptor is None:
        return None
    if isinstance(descriptor, str):
        return _normalize_text(descriptor, fallback_name=fallback_name, subject_type=subject)
    if isinstance(descriptor, Mapping):
        return _normalize_mapping(descriptor, fallback_name=fallback_name, subject_type=subject)
    if isinstance(descriptor, (list, tuple)) and descriptor and all(
        isinstance(entry, Mapping) for entry in descriptor
    ):
        return _normalize_mapping(
            {"data": list(descriptor)}, fallback_name=fallback_name, subject_type=subject
        )

    log_event(
        LOGGER,
        "normalizer.descriptor.skipped",
        descriptor_type=type(descriptor).__name__,
    )
    return None


def question_id(question: Mapping[str, Any]) -> str | None:
    value = coalesce(question, QUESTION_ID_ALIASES)
    return str(value) if value is not None else None


def question_text(question: Mapping[str, Any]) -> str:
    value = coalesce(question, QUESTION_TEXT_ALIASES)
    if isinstance(value, str):
        return value.strip()
    content = question.get("content")
    return content.strip() if isinstance(content, str) else ""


def question_subject_type(question: Mapping[str, Any]) -> SubjectType:
    return resolve_subject_type(coalesce(question, QUESTION_TYPE_ALIASES))


def _is_descriptor_list(value: Any) -> bool:
    if not isinstance(value, (list, tuple)) or not value:
        return False
    for entry in value:
        if isinstance(entry, str):
            continue
        if isinstance(entry, Mapping) and DESCRIPTOR_KEYS.intersection(entry.keys()):
            continue
        return False
    return True


def collect_question_datasets(question: Mapping[str, Any]) -> list[DatasetRecord]:
    """Resolve every dataset shape attached to a question, de-duplicated by record id."""
    default_subject = question_subject_type(question)
    records: list[DatasetRecord] = []
    seen: set[str] = set()

    for field_name, subject_hint, allow_description_only in QUESTION_DATASET_FIELDS:
        value = _maybe_json(question.get(field_name))
        if _is_empty(value):
            continue
        subject = subject_hint or default_subject
        if field_name == "datasets" and isinstance(value, (list, tuple)):
            descriptors = list(value)
        elif field_name != "sample_data" and _is_descriptor_list(value):
            descriptors = list(value)
        else:
            descriptors = [value]

        for descriptor in descriptors:
            record = normalize(
                descriptor,
                fallback_name=f"Dataset {len(records) + 1}",
                subject_type=subject,
            )
            if record is None:
                continue
            has_data = bool(
                record.rows or record.columns or record.creation_sql or record.creation_python or record.raw_csv
            )
            if not has_data and not allow_description_only:
                continue
            if record.id in seen:
                continue
            seen.add(record.id)
            records.append(record)

    log_event(
        LOGGER,
        "normalizer.question.resolved",
        question_id=question_id(question),
        dataset_count=len(records),
    )
    return records
