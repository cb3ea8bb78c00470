from __future__ import annotations

import asyncio

import pytest

from practice_lab.services.engine_preparation import EnginePreparationCoordinator, PreparationStatus
from practice_lab.services.engine_session import AnalyticalEngineSession, DuckDBEngineSession, EngineStatementError
from practice_lab.services.normalizer import normalize
from practice_lab.utils.constants import ENGINE_NOT_READY_MESSAGE
from tests.fixtures.practice.engines import ScriptedEngineSession
from tests.fixtures.practice.questions import ORDERS_SETUP_SQL, PRODUCTS_SETUP_SQL


def _record(descriptor):
    record = normalize(descriptor)
    assert record is not None
    return record


def test_prepare_attributes_tables_to_datasets(engine_session: AnalyticalEngineSession) -> None:
    coordinator = EnginePreparationCoordinator(engine_session)
    orders = _record({"create_sql": ORDERS_SETUP_SQL})

    result = asyncio.run(coordinator.prepare("q1", [orders]))

    assert result.stale is False
    state = coordinator.state
    assert state.status is PreparationStatus.READY
    assert state.table_map == {orders.id: ["orders", "customers"]}
    assert sorted(state.tables) == ["customers", "orders"]
    assert coordinator.tables_for(orders) == ["orders", "customers"]


def test_reset_between_questions(engine_session: AnalyticalEngineSession) -> None:
    coordinator = EnginePreparationCoordinator(engine_session)
    orders = _record({"create_sql": ORDERS_SETUP_SQL})
    products = _record({"create_sql": PRODUCTS_SETUP_SQL})

    async def scenario() -> dict[str, object]:
        await coordinator.prepare("q1", [orders])
        await coordinator.prepare("q2", [products])
        return await coordinator.execute("SELECT * FROM orders")

    leaked = asyncio.run(scenario())

    assert coordinator.state.question_id == "q2"
    assert coordinator.state.tables == ["products"]
    assert "error" in leaked


def test_learner_queries_return_rows(engine_session: AnalyticalEngineSession) -> None:
    coordinator = EnginePreparationCoordinator(engine_session)
    orders = _record({"create_sql": ORDERS_SETUP_SQL})

    async def scenario() -> dict[str, object]:
        await coordinator.prepare("q1", [orders])
        return await coordinator.execute(
            "SELECT c.name, SUM(o.amount) AS total FROM orders o "
            "JOIN customers c ON c.id = o.customer_id GROUP BY c.name ORDER BY c.name"
        )

    result = asyncio.run(scenario())

    assert result["columns"] == ["name", "total"]
    assert [[name, int(total)] for name, total in result["rows"]] == [["Doe", 45], ["Smith; J", 200]]


def test_learner_errors_are_returned(engine_session: AnalyticalEngineSession) -> None:
    coordinator = EnginePreparationCoordinator(engine_session)

    async def scenario() -> tuple[dict[str, object], dict[str, object], dict[str, object]]:
        before = await coordinator.execute("SELECT 1")
        await coordinator.prepare("q1", [_record({"create_sql": PRODUCTS_SETUP_SQL})])
        failing = await coordinator.execute("SELECT missing_column FROM products")
        empty = await coordinator.execute("  ")
        return before, failing, empty

    before, failing, empty = asyncio.run(scenario())

    assert before == {"error": ENGINE_NOT_READY_MESSAGE}
    assert failing["error"]
    assert empty == {"error": "Query is empty."}
    assert coordinator.state.status is PreparationStatus.READY


def test_rows_only_datasets_are_loaded(engine_session: AnalyticalEngineSession) -> None:
    coordinator = EnginePreparationCoordinator(engine_session)
    people = _record({"table_name": "people", "data": [{"name": "Ann", "age": 31}, {"name": "Bo", "age": 45}]})
    unnamed = _record({"data": [{"x": 1}]})

    async def scenario() -> dict[str, object]:
        await coordinator.prepare("q1", [people, unnamed])
        return await coordinator.execute("SELECT name FROM people ORDER BY age")

    result = asyncio.run(scenario())

    assert result["rows"] == [["Ann"], ["Bo"]]
    assert coordinator.state.table_map == {people.id: ["people"], unnamed.id: ["dataset_1"]}


def test_statement_failure_keeps_partial_state(engine_session: AnalyticalEngineSession) -> None:
    coordinator = EnginePreparationCoordinator(engine_session)
    products = _record({"create_sql": PRODUCTS_SETUP_SQL})
    broken = _record({"create_sql": "CREATE TABLE staging (id INTEGER); INSERT INTO missing_table VALUES (1);"})

    async def scenario() -> dict[str, object]:
        await coordinator.prepare("q1", [products, broken])
        return await coordinator.execute("SELECT * FROM products")

    result = asyncio.run(scenario())

    state = coordinator.state
    assert state.status is PreparationStatus.FAILED
    assert state.error
    assert state.table_map == {products.id: ["products"]}
    assert sorted(state.tables) == ["products", "staging"]
    assert result == {"error": state.error}


def test_retry_reruns_current_question(scripted_session: ScriptedEngineSession) -> None:
    coordinator = EnginePreparationCoordinator(scripted_session)
    record = _record({"create_sql": "CREATE TABLE flaky (id INT);"})
    scripted_session.failing.add("flaky")

    asyncio.run(coordinator.prepare("q1", [record]))
    assert coordinator.state.status is PreparationStatus.FAILED

    scripted_session.failing.clear()
    result = asyncio.run(coordinator.retry())

    assert result.question_id == "q1"
    assert coordinator.state.status is PreparationStatus.READY
    assert coordinator.state.tables == ["flaky"]


def test_views_are_dropped_on_reset(engine_session: AnalyticalEngineSession) -> None:
    coordinator = EnginePreparationCoordinator(engine_session)
    with_view = _record(
        {"create_sql": "CREATE TABLE base (x INTEGER); CREATE VIEW doubled AS SELECT x * 2 AS y FROM base;"}
    )

    async def scenario() -> None:
        await coordinator.prepare("q1", [with_view])
        await coordinator.prepare("q2", [_record({"create_sql": PRODUCTS_SETUP_SQL})])

    asyncio.run(scenario())

    assert coordinator.state.tables == ["products"]


def test_stale_preparation_is_discarded(scripted_session: ScriptedEngineSession) -> None:
    coordinator = EnginePreparationCoordinator(scripted_session)
    slow = _record({"create_sql": "CREATE TABLE slow_table (id INT);"})
    fast = _record({"create_sql": "CREATE TABLE fast_table (id INT);"})
    gate = asyncio.Event()

    async def scenario():
        scripted_session.gates["slow_table"] = gate
        first = asyncio.create_task(coordinator.prepare("q1", [slow]))
        await asyncio.sleep(0)
        second = asyncio.create_task(coordinator.prepare("q2", [fast]))
        await asyncio.sleep(0)
        gate.set()
        return await first, await second

    first, second = asyncio.run(scenario())

    assert first.stale is True
    assert first.state is None
    assert second.stale is False
    assert coordinator.state.question_id == "q2"
    assert coordinator.state.status is PreparationStatus.READY
    assert coordinator.state.tables == ["fast_table"]
    assert coordinator.state.table_map == {fast.id: ["fast_table"]}
    assert "slow_table" in scripted_session.dropped


def test_preview_table_reads_capped_sample(duckdb_session) -> None:
    coordinator = EnginePreparationCoordinator(duckdb_session)

    async def scenario():
        await coordinator.prepare("q1", [_record({"create_sql": ORDERS_SETUP_SQL})])
        return await coordinator.preview_table("orders", limit=2), await coordinator.preview_table("nope", limit=2)

    preview, missing = asyncio.run(scenario())

    assert preview.columns == ["id", "customer_id", "amount"]
    assert len(preview.rows) == 2
    assert missing is None


def test_learner_sql_comments_are_ignored(engine_session: AnalyticalEngineSession) -> None:
    coordinator = EnginePreparationCoordinator(engine_session)

    async def scenario():
        await coordinator.prepare("q1", [_record({"create_sql": PRODUCTS_SETUP_SQL})])
        trailing = await coordinator.execute("SELECT sku FROM products ORDER BY sku; -- done; see notes")
        leading = await coordinator.execute(
            "-- don't forget the filter\n"
            "SELECT price FROM products WHERE sku = 'a-1';\n"
            "/* it's the pricier one */ SELECT sku FROM products WHERE price > 20"
        )
        comment_only = await coordinator.execute("-- nothing yet; still thinking")
        return trailing, leading, comment_only

    trailing, leading, comment_only = asyncio.run(scenario())

    assert trailing == {"columns": ["sku"], "rows": [["a-1"], ["b-2"]]}
    assert leading == {"columns": ["sku"], "rows": [["b-2"]]}
    assert comment_only == {"error": "Query is empty."}


def test_catalog_failure_marks_preparation_failed(scripted_session: ScriptedEngineSession) -> None:
    coordinator = EnginePreparationCoordinator(scripted_session)
    scripted_session.catalog_error = "Connection Error: Connection already closed!"

    result = asyncio.run(coordinator.prepare("q1", [_record({"create_sql": PRODUCTS_SETUP_SQL})]))

    assert result.stale is False
    assert coordinator.state.status is PreparationStatus.FAILED
    assert coordinator.state.error == "Connection Error: Connection already closed!"
    assert coordinator.state.tables == []
    assert asyncio.run(coordinator.execute("SELECT 1")) == {"error": coordinator.state.error}


def test_closed_duckdb_session_reports_statement_errors() -> None:
    session = DuckDBEngineSession()
    session.close()
    coordinator = EnginePreparationCoordinator(session)

    with pytest.raises(EngineStatementError):
        asyncio.run(session.list_tables())
    asyncio.run(coordinator.prepare("q1", [_record({"create_sql": PRODUCTS_SETUP_SQL})]))

    assert coordinator.state.status is PreparationStatus.FAILED
    assert coordinator.state.error
