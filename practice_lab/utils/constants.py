"""Centralised constants for dataset previews and engine preparation messages."""

from __future__ import annotations

NO_PREVIEW_MESSAGE = "No preview available"
"""Shown in place of a grid when no usable dataset signal exists."""

NO_ROWS_TO_LOAD_MESSAGE = "Dataset has no rows available to load."
"""Interpreter load failure recorded without attempting a load."""

ENGINE_NOT_READY_MESSAGE = "Database not ready"
"""Returned for query execution while preparation is incomplete or failed."""

INTERPRETER_NO_OUTPUT_MESSAGE = "Code executed successfully (no output)"

GENERATED_TABLE_PREFIX = "dataset"
"""Prefix for generated table and variable names (``dataset_1``, ``dataset_2`` ...)."""

SETUP_SCRIPT_KEYWORDS: tuple[str, ...] = (
    "select",
    "create",
    "insert",
    "update",
    "delete",
    "merge",
    "with",
    "drop",
    "alter",
    "table",
    "into",
    "values",
)

SQL_QUESTION_TYPES: frozenset[str] = frozenset({"sql", "duckdb", "sqlite", "postgres", "mysql"})
PYTHON_QUESTION_TYPES: frozenset[str] = frozenset(
    {"python", "pandas", "statistics", "data_science", "py"}
)
