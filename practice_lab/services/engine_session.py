from __future__ import annotations

import asyncio
import threading
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

import duckdb
import pandas as pd
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.pool import StaticPool

from practice_lab.utils.config import EngineConfig, load_engine_config
from practice_lab.utils.logging import get_logger

LOGGER = get_logger(__name__)

_STAGING_RELATION = "__practice_lab_rows"


class EngineStatementError(RuntimeError):
    """Raised when the analytical engine rejects a statement."""


@dataclass(slots=True)
class StatementResult:
    columns: list[str] = field(default_factory=list)
    rows: list[list[Any]] = field(default_factory=list)


class AnalyticalEngineSession(Protocol):
    """Shared, stateful SQL session used for question preparation and learner queries."""

    async def list_tables(self) -> list[str]: ...

    async def drop_table(self, name: str) -> None: ...

    async def execute(self, sql: str) -> StatementResult: ...

    async def load_rows(self, name: str, columns: Sequence[str], rows: Sequence[dict[str, Any]]) -> None: ...

    def close(self) -> None: ...


def quote_identifier(name: str) -> str:
    escaped = name.replace('"', '""')
    return f'"{escaped}"'


def rows_frame(columns: Sequence[str], rows: Sequence[dict[str, Any]]) -> pd.DataFrame:
    return pd.DataFrame.from_records(list(rows), columns=list(columns))


class DuckDBEngineSession:
    """In-process DuckDB connection; blocking calls run in a worker thread one at a time."""

    def __init__(self, database: str = ":memory:") -> None:
        self.database = database
        self._connection = duckdb.connect(database=database)
        self._lock = threading.Lock()

    def _objects(self) -> list[tuple[str, str]]:
        try:
            with self._lock:
                result = self._connection.execute(
                    "SELECT table_name, table_type FROM information_schema.tables "
                    "WHERE table_schema = 'main' ORDER BY table_type DESC, table_name"
                ).fetchall()
        except duckdb.Error as error:
            raise EngineStatementError(str(error)) from error
        return [(str(name), str(kind)) for name, kind in result]

    def _execute(self, sql: str) -> StatementResult:
        try:
            with self._lock:
                cursor = self._connection.execute(sql)
                description = cursor.description or []
                columns = [str(column[0]) for column in description]
                rows = [list(row) for row in cursor.fetchall()] if columns else []
        except duckdb.Error as error:
            raise EngineStatementError(str(error)) from error
        return StatementResult(columns=columns, rows=rows)

    def _drop(self, name: str) -> None:
        kinds = {object_name: kind for object_name, kind in self._objects()}
        keyword = "VIEW" if kinds.get(name, "").upper() == "VIEW" else "TABLE"
        self._execute(f"DROP {keyword} IF EXISTS {quote_identifier(name)}")

    def _load(self, name: str, columns: Sequence[str], rows: Sequence[dict[str, Any]]) -> None:
        frame = rows_frame(columns, rows)
        try:
            with self._lock:
                self._connection.execute(f"DROP TABLE IF EXISTS {quote_identifier(name)}")
                self._connection.register(_STAGING_RELATION, frame)
                try:
                    self._connection.execute(
                        f"CREATE TABLE {quote_identifier(name)} AS SELECT * FROM {_STAGING_RELATION}"
                    )
                finally:
                    self._connection.unregister(_STAGING_RELATION)
        except duckdb.Error as error:
            raise EngineStatementError(str(error)) from error

    async def list_tables(self) -> list[str]:
        objects = await asyncio.to_thread(self._objects)
        return [name for name, _kind in objects]

    async def drop_table(self, name: str) -> None:
        await asyncio.to_thread(self._drop, name)

    async def execute(self, sql: str) -> StatementResult:
        return await asyncio.to_thread(self._execute, sql)

    async def load_rows(self, name: str, columns: Sequence[str], rows: Sequence[dict[str, Any]]) -> None:
        await asyncio.to_thread(self._load, name, columns, rows)

    def close(self) -> None:
        with self._lock:
            self._connection.close()


class SqliteEngineSession:
    """SQLAlchemy-managed SQLite database pinned to a single connection."""

    def __init__(self, url: str = "sqlite://", *, engine: Engine | None = None) -> None:
        self.engine = engine or create_engine(
            url,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        self._lock = threading.Lock()

    def _objects(self) -> list[tuple[str, str]]:
        try:
            with self._lock, self.engine.connect() as connection:
                result = connection.execute(
                    text(
                        "SELECT name, type FROM sqlite_master "
                        "WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite_%' ORDER BY type DESC, name"
                    )
                )
                return [(str(name), str(kind)) for name, kind in result]
        except SQLAlchemyError as error:
            message = str(getattr(error, "orig", None) or error)
            raise EngineStatementError(message) from error

    def _execute(self, sql: str) -> StatementResult:
        try:
            with self._lock, self.engine.begin() as connection:
                result = connection.exec_driver_sql(sql)
                if not result.returns_rows:
                    return StatementResult()
                columns = [str(column) for column in result.keys()]
                return StatementResult(columns=columns, rows=[list(row) for row in result])
        except SQLAlchemyError as error:
            message = str(getattr(error, "orig", None) or error)
            raise EngineStatementError(message) from error

    def _drop(self, name: str) -> None:
        kinds = {object_name: kind for object_name, kind in self._objects()}
        keyword = "VIEW" if kinds.get(name) == "view" else "TABLE"
        self._execute(f"DROP {keyword} IF EXISTS {quote_identifier(name)}")

    def _load(self, name: str, columns: Sequence[str], rows: Sequence[dict[str, Any]]) -> None:
        frame = rows_frame(columns, rows)
        try:
            with self._lock, self.engine.begin() as connection:
                frame.to_sql(name, connection, index=False, if_exists="replace")
        except (SQLAlchemyError, ValueError) as error:
            raise EngineStatementError(str(error)) from error

    async def list_tables(self) -> list[str]:
        objects = await asyncio.to_thread(self._objects)
        return [name for name, _kind in objects]

    async def drop_table(self, name: str) -> None:
        await asyncio.to_thread(self._drop, name)

    async def execute(self, sql: str) -> StatementResult:
        return await asyncio.to_thread(self._execute, sql)

    async def load_rows(self, name: str, columns: Sequence[str], rows: Sequence[dict[str, Any]]) -> None:
        await asyncio.to_thread(self._load, name, columns, rows)

    def close(self) -> None:
        self.engine.dispose()


def create_engine_session(config: EngineConfig | None = None) -> AnalyticalEngineSession:
    resolved = config or load_engine_config()
    LOGGER.info("Opening %s analytical engine session (%s)", resolved.backend, resolved.database)
    if resolved.backend == "sqlite":
        database = resolved.database
        url = "sqlite://" if database in {"", ":memory:"} else f"sqlite:///{database}"
        return SqliteEngineSession(url)
    return DuckDBEngineSession(resolved.database)
