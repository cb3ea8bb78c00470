from __future__ import annotations

from practice_lab.services.sql_script import extract_table_names, split_statements, strip_comments
from tests.fixtures.practice.questions import ORDERS_SETUP_SQL


def test_split_ignores_terminators_inside_quotes() -> None:
    script = "INSERT INTO t VALUES ('a;b', \"c;d\"); SELECT `odd;name` FROM t; SELECT 1"

    statements = split_statements(script)

    assert statements == [
        "INSERT INTO t VALUES ('a;b', \"c;d\")",
        "SELECT `odd;name` FROM t",
        "SELECT 1",
    ]


def test_split_handles_doubled_quotes() -> None:
    statements = split_statements("INSERT INTO t VALUES ('it''s; fine'); SELECT 2;")

    assert statements == ["INSERT INTO t VALUES ('it''s; fine')", "SELECT 2"]


def test_split_drops_empty_fragments() -> None:
    assert split_statements(" ; ;\n") == []
    assert split_statements(None) == []


def test_two_table_script_names_in_order() -> None:
    script = "CREATE TABLE orders (id INT); CREATE TABLE customers (id INT);"

    assert extract_table_names(script) == ["orders", "customers"]


def test_names_from_fixture_script_are_deduplicated() -> None:
    assert extract_table_names(ORDERS_SETUP_SQL) == ["orders", "customers"]


def test_quoted_and_qualified_names() -> None:
    script = (
        'CREATE TABLE IF NOT EXISTS "Order Items" (id INT);\n'
        "CREATE OR REPLACE VIEW [v_sales] AS SELECT 1;\n"
        "CREATE TEMP TABLE `staging` (id INT);\n"
        "INSERT INTO main.orders VALUES (1);"
    )

    assert extract_table_names(script) == ["Order Items", "v_sales", "staging", "orders"]


def test_dedup_is_case_sensitive() -> None:
    script = "CREATE TABLE Orders (id INT); INSERT INTO orders VALUES (1); INSERT INTO Orders VALUES (2);"

    assert extract_table_names(script) == ["Orders", "orders"]


def test_commented_statements_are_ignored() -> None:
    script = "-- CREATE TABLE ghost (x INT);\n/* CREATE TABLE phantom (x INT); */\nCREATE TABLE real_table (x INT);"

    assert extract_table_names(script) == ["real_table"]


def test_comment_markers_inside_strings_survive() -> None:
    script = "INSERT INTO notes VALUES ('--keep', '/* me */');"

    assert strip_comments(script) == script


def test_extraction_is_idempotent() -> None:
    names = extract_table_names(ORDERS_SETUP_SQL)
    rejoined = ";\n".join(split_statements(strip_comments(ORDERS_SETUP_SQL)))

    assert extract_table_names(ORDERS_SETUP_SQL) == names
    assert extract_table_names(rejoined) == names


def test_unmatched_script_yields_no_names() -> None:
    assert extract_table_names("SELECT 1; UPDATE t SET a = 1;") == []
    assert extract_table_names(None) == []
