from __future__ import annotations

import pytest

from practice_lab.services.dataset_models import SubjectType
from practice_lab.services.normalizer import (
    collect_question_datasets,
    dataset_engine_key,
    normalize,
    question_id,
    question_subject_type,
    question_text,
)
from practice_lab.services.preview_cache import preview_from_record
from tests.fixtures.practice.questions import ORDERS_SETUP_SQL, QUOTED_CSV, python_question, sql_question


def test_description_only_descriptor_is_kept() -> None:
    record = normalize({"description": "Quarterly revenue figures."})

    assert record is not None
    assert record.description == "Quarterly revenue figures."
    assert record.rows == []
    assert record.columns == []
    assert preview_from_record(record, row_cap=10) is None


@pytest.mark.parametrize("descriptor", [None, 42, "", "   ", {}, [], {"unrelated": None}])
def test_unusable_descriptors_return_none(descriptor) -> None:
    assert normalize(descriptor) is None


def test_plain_text_table_populates_rows() -> None:
    record = normalize(QUOTED_CSV)

    assert record is not None
    assert record.raw_csv == QUOTED_CSV
    assert record.columns == ["name", "qty"]
    assert record.rows[0] == {"name": "Smith, J", "qty": "5"}
    assert record.creation_sql is None


def test_plain_text_script_is_collapsed() -> None:
    record = normalize("```sql\n  CREATE TABLE t (\n      id INT\n  );\n\n  INSERT INTO t VALUES (1);\n```")

    assert record is not None
    assert record.creation_sql == "CREATE TABLE t (\nid INT\n);\nINSERT INTO t VALUES (1);"
    assert record.table_names == ["t"]
    assert record.name == "t"


def test_plain_prose_becomes_description() -> None:
    record = normalize("Sales made in the last quarter, by region.", fallback_name="Dataset 1")

    assert record is not None
    assert record.description == "Sales made in the last quarter, by region."
    assert record.name == "Dataset 1"


def test_python_setup_script_keeps_indentation() -> None:
    script = "```python\nimport pandas as pd\nfor i in range(2):\n    print(i)\n```"

    record = normalize({"create_python": script})

    assert record is not None
    assert record.creation_python == "import pandas as pd\nfor i in range(2):\n    print(i)"


def test_python_text_for_python_subject() -> None:
    record = normalize("import pandas as pd\nsales = pd.DataFrame({'a': [1]})", subject_type="pandas")

    assert record is not None
    assert record.subject_type is SubjectType.PYTHON
    assert record.creation_python.startswith("import pandas")
    assert record.creation_sql is None


def test_legacy_aliases_are_resolved() -> None:
    record = normalize(
        {
            "title": "Legacy",
            "schema_info": {
                "creation_sql": "CREATE TABLE legacy_orders (id INT);",
                "table_name": "legacy_orders",
                "description": "Nested shape",
            },
        }
    )

    assert record is not None
    assert record.name == "Legacy"
    assert record.description == "Nested shape"
    assert record.creation_sql == "CREATE TABLE legacy_orders (id INT);"
    assert record.table_name == "legacy_orders"
    assert record.id == "table:legacy_orders"


def test_json_encoded_schema_info_is_decoded() -> None:
    record = normalize({"schema_info": '{"dataset_csv_raw": "a,b\\n1,2"}'})

    assert record is not None
    assert record.rows == [{"a": "1", "b": "2"}]


def test_rows_derive_columns_and_fill_missing_cells() -> None:
    record = normalize({"data": [{"id": 1, "name": "Ann"}, {"id": 2}, {"id": 3, "city": "Oslo"}]})

    assert record is not None
    assert record.columns == ["id", "name", "city"]
    assert record.rows[1] == {"id": 2, "name": None, "city": None}
    assert all(set(row) == set(record.columns) for row in record.rows)


def test_list_rows_are_zipped_with_columns() -> None:
    record = normalize({"columns": [{"name": "id"}, {"name": "label"}], "rows": [[1, "a"], [2]]})

    assert record is not None
    assert record.rows == [{"id": 1, "label": "a"}, {"id": 2, "label": None}]


def test_tabular_text_in_rows_field() -> None:
    record = normalize({"data": QUOTED_CSV})

    assert record is not None
    assert record.raw_csv == QUOTED_CSV
    assert len(record.rows) == 2


def test_script_in_rows_field_becomes_setup_script() -> None:
    record = normalize({"data": "CREATE TABLE t (id INT); INSERT INTO t VALUES (1);"})

    assert record is not None
    assert record.creation_sql is not None
    assert record.table_names == ["t"]


def test_record_identity_is_a_content_signature() -> None:
    first = normalize({"create_sql": ORDERS_SETUP_SQL})
    second = normalize({"creation_sql": "\n" + ORDERS_SETUP_SQL + "\n"})
    explicit = normalize({"id": 17, "create_sql": ORDERS_SETUP_SQL})

    assert first is not None and second is not None and explicit is not None
    assert first.id == second.id
    assert first.id.startswith("sql:")
    assert explicit.id == "17"
    assert dataset_engine_key(first) == first.id


def test_question_helpers() -> None:
    question = {"question_id": 9, "question_text": "  Count rows. ", "question_type": "SQLite"}

    assert question_id(question) == "9"
    assert question_text(question) == "Count rows."
    assert question_subject_type(question) is SubjectType.SQL


def test_collect_question_datasets_across_fields() -> None:
    question = sql_question(
        context="Just prose context about the business.",
        exercisePythonDataset={"name": "frame", "data": [{"x": 1}]},
    )

    records = collect_question_datasets(question)

    assert [record.name for record in records] == ["Orders", "frame"]
    assert records[0].subject_type is SubjectType.SQL
    assert records[1].subject_type is SubjectType.PYTHON


def test_collect_question_datasets_deduplicates_by_identity() -> None:
    question = sql_question(exerciseDataset={"create_sql": ORDERS_SETUP_SQL})

    records = collect_question_datasets(question)

    assert len(records) == 1


def test_collect_question_datasets_expands_lists() -> None:
    question = python_question(
        datasets=[
            {"table_name": "north", "data": [{"v": 1}]},
            {"table_name": "south", "data": [{"v": 2}]},
        ]
    )

    records = collect_question_datasets(question)

    assert [record.id for record in records] == ["table:north", "table:south", records[2].id]
    assert records[2].name == "Sales Data"


def test_collect_treats_row_lists_as_one_dataset() -> None:
    question = {"id": "q", "type": "python", "dataset": [{"a": 1}, {"a": 2}]}

    records = collect_question_datasets(question)

    assert len(records) == 1
    assert records[0].rows == [{"a": 1}, {"a": 2}]
