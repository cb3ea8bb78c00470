from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest

from practice_lab.services.engine_preparation import EnginePreparationCoordinator
from practice_lab.services.engine_session import (
    AnalyticalEngineSession,
    DuckDBEngineSession,
    SqliteEngineSession,
)
from practice_lab.services.interpreter import InterpreterBridge, InterpreterRuntime
from practice_lab.services.preview_cache import PreviewCache
from practice_lab.services.workspace import PracticeWorkspace
from tests.fixtures.practice.engines import ScriptedEngineSession


@pytest.fixture
def temp_data_root(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    data_root = tmp_path / "data"
    data_root.mkdir()
    monkeypatch.setenv("DATA_ROOT", str(data_root))
    return data_root


@pytest.fixture
def duckdb_session() -> Iterator[DuckDBEngineSession]:
    session = DuckDBEngineSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sqlite_session() -> Iterator[SqliteEngineSession]:
    session = SqliteEngineSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(params=["duckdb", "sqlite"])
def engine_session(request: pytest.FixtureRequest) -> Iterator[AnalyticalEngineSession]:
    session: AnalyticalEngineSession = DuckDBEngineSession() if request.param == "duckdb" else SqliteEngineSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def scripted_session() -> ScriptedEngineSession:
    return ScriptedEngineSession()


@pytest.fixture
def interpreter_runtime() -> InterpreterRuntime:
    return InterpreterRuntime()


@pytest.fixture
def workspace_factory(duckdb_session: DuckDBEngineSession):
    def _factory(*, fetcher=None, row_cap: int = 5) -> PracticeWorkspace:
        return PracticeWorkspace(
            coordinator=EnginePreparationCoordinator(duckdb_session),
            bridge=InterpreterBridge(InterpreterRuntime()),
            fetcher=fetcher,
            cache=PreviewCache(row_cap=row_cap),
        )

    return _factory


@pytest.fixture
def workspace(workspace_factory) -> PracticeWorkspace:
    return workspace_factory()
