from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

Row = dict[str, Any]


class SubjectType(str, Enum):
    SQL = "sql"
    PYTHON = "python"
    UNKNOWN = "unknown"


@dataclass(slots=True)
class DatasetRecord:
    """Canonical dataset resolved from an untrusted descriptor.

    Rows are normalized on construction: every row carries exactly the keys of
    ``columns`` (missing cells become None) and keys that only appear in rows are
    appended to ``columns`` in first-seen order.
    """

    id: str
    name: str
    source_id: str | None = None
    description: str | None = None
    creation_sql: str | None = None
    creation_python: str | None = None
    columns: list[str] = field(default_factory=list)
    rows: list[Row] = field(default_factory=list)
    raw_csv: str | None = None
    table_name: str | None = None
    table_names: list[str] = field(default_factory=list)
    subject_type: SubjectType = SubjectType.UNKNOWN

    def __post_init__(self) -> None:
        columns = [str(column) for column in self.columns if str(column).strip()]
        known = set(columns)
        for row in self.rows:
            for key in row:
                name = str(key)
                if name not in known:
                    known.add(name)
                    columns.append(name)
        self.columns = columns
        self.rows = [{column: row.get(column) for column in columns} for row in self.rows]

    @property
    def has_rows(self) -> bool:
        return bool(self.rows)

    @property
    def has_setup_script(self) -> bool:
        return bool(self.creation_sql)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "sourceId": self.source_id,
            "name": self.name,
            "description": self.description,
            "creationSql": self.creation_sql,
            "creationPython": self.creation_python,
            "columns": list(self.columns),
            "rows": [dict(row) for row in self.rows],
            "rawCsv": self.raw_csv,
            "tableName": self.table_name,
            "tableNames": list(self.table_names),
            "subjectType": self.subject_type.value,
        }


@dataclass(frozen=True, slots=True)
class DatasetVariant:
    id: str
    label: str
    record: DatasetRecord
    table_name: str | None = None

    def to_option(self) -> dict[str, str | None]:
        return {"id": self.id, "label": self.label, "tableName": self.table_name}


@dataclass(frozen=True, slots=True)
class DatasetPreview:
    columns: list[str]
    rows: list[list[Any]]

    @property
    def is_empty(self) -> bool:
        return not self.columns

    def to_dict(self) -> dict[str, object]:
        return {"columns": list(self.columns), "rows": [list(row) for row in self.rows]}
