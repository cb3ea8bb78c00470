from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum

from practice_lab.services.dataset_models import DatasetPreview, DatasetRecord
from practice_lab.services.engine_session import (
    AnalyticalEngineSession,
    EngineStatementError,
    quote_identifier,
)
from practice_lab.services.normalizer import dataset_engine_key
from practice_lab.services.preview_cache import build_preview
from practice_lab.services.sql_script import extract_table_names, split_statements, strip_comments
from practice_lab.utils.constants import ENGINE_NOT_READY_MESSAGE, GENERATED_TABLE_PREFIX
from practice_lab.utils.logging import get_logger, log_event, log_warning_event
from practice_lab.utils.metrics import emit_engine_metric, measure_engine

LOGGER = get_logger(__name__)


class PreparationStatus(str, Enum):
    IDLE = "idle"
    RESETTING = "resetting"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass(slots=True)
class EngineSessionState:
    question_id: str | None = None
    status: PreparationStatus = PreparationStatus.IDLE
    error: str | None = None
    table_map: dict[str, list[str]] = field(default_factory=dict)
    tables: list[str] = field(default_factory=list)

    def tables_for(self, dataset_key: str) -> list[str]:
        return list(self.table_map.get(dataset_key, []))

    def to_dict(self) -> dict[str, object]:
        return {
            "questionId": self.question_id,
            "status": self.status.value,
            "error": self.error,
            "tableMap": {key: list(names) for key, names in self.table_map.items()},
            "tables": list(self.tables),
        }


@dataclass(frozen=True, slots=True)
class PreparationResult:
    question_id: str | None
    token: int
    stale: bool
    state: EngineSessionState | None = None


class _StalePreparation(Exception):
    pass


def _order_delta(delta: Sequence[str], script: str | None) -> list[str]:
    """Order newly created tables as the script introduces them."""
    remaining = list(delta)
    ordered: list[str] = []
    for name in extract_table_names(script):
        for candidate in remaining:
            if candidate.lower() == name.lower():
                ordered.append(candidate)
                remaining.remove(candidate)
                break
    return ordered + remaining


class EnginePreparationCoordinator:
    """Owns the shared analytical session: resets it and loads the active question's datasets.

    Every call to ``prepare`` advances a question token. Work finishing under an
    older token is discarded without touching the committed state, and the
    session lock keeps two passes from interleaving their DDL.
    """

    def __init__(self, session: AnalyticalEngineSession) -> None:
        self.session = session
        self.state = EngineSessionState()
        self._token = 0
        self._lock = asyncio.Lock()
        self._records: list[DatasetRecord] = []

    @property
    def token(self) -> int:
        return self._token

    @property
    def is_ready(self) -> bool:
        return self.state.status is PreparationStatus.READY

    def tables_for(self, record: DatasetRecord) -> list[str]:
        return self.state.tables_for(dataset_engine_key(record))

    async def prepare(self, question_id: str | None, records: Sequence[DatasetRecord]) -> PreparationResult:
        self._token += 1
        token = self._token
        self._records = list(records)
        log_event(
            LOGGER,
            "engine.prepare.requested",
            question_id=question_id,
            token=token,
            datasets=len(records),
        )

        async with self._lock:
            if token != self._token:
                return PreparationResult(question_id=question_id, token=token, stale=True)
            try:
                with measure_engine("prepare", question_id=question_id, datasets=len(records)):
                    state = await self._run_pass(question_id, list(records), token)
            except _StalePreparation:
                log_event(LOGGER, "engine.prepare.stale", question_id=question_id, token=token)
                return PreparationResult(question_id=question_id, token=token, stale=True)
        return PreparationResult(question_id=question_id, token=token, stale=False, state=state)

    async def retry(self) -> PreparationResult:
        return await self.prepare(self.state.question_id, self._records)

    def _check(self, token: int) -> None:
        if token != self._token:
            raise _StalePreparation()

    async def _run_pass(
        self,
        question_id: str | None,
        records: list[DatasetRecord],
        token: int,
    ) -> EngineSessionState:
        self.state = EngineSessionState(question_id=question_id, status=PreparationStatus.RESETTING)
        table_map: dict[str, list[str]] = {}

        try:
            existing = await self.session.list_tables()
            self._check(token)
            for name in existing:
                await self.session.drop_table(name)
                self._check(token)

            self.state.status = PreparationStatus.LOADING
            generated = 0
            for record in records:
                key = dataset_engine_key(record)
                if record.creation_sql:
                    created = await self._run_setup_script(record, token)
                elif record.rows:
                    generated += 1
                    name = record.table_name or f"{GENERATED_TABLE_PREFIX}_{generated}"
                    await self.session.load_rows(name, record.columns, record.rows)
                    self._check(token)
                    created = [name]
                else:
                    continue
                table_map[key] = created
                self.state.table_map = dict(table_map)
            tables = await self.session.list_tables()
        except EngineStatementError as error:
            self._check(token)
            self.state.table_map = dict(table_map)
            self.state.tables = await self._tables_after_failure()
            self.state.status = PreparationStatus.FAILED
            self.state.error = str(error)
            log_warning_event(
                LOGGER,
                "engine.prepare.failed",
                question_id=question_id,
                error=str(error),
                tables=self.state.tables,
            )
            emit_engine_metric("prepare.failed", question_id=question_id)
            return self.state

        self._check(token)
        self.state.tables = tables
        self.state.table_map = table_map
        self.state.status = PreparationStatus.READY
        log_event(
            LOGGER,
            "engine.prepare.ready",
            question_id=question_id,
            tables=self.state.tables,
            datasets=len(table_map),
        )
        return self.state

    async def _tables_after_failure(self) -> list[str]:
        """Current engine tables, or the last committed list when the catalog cannot be read."""
        try:
            return await self.session.list_tables()
        except EngineStatementError as error:
            log_warning_event(LOGGER, "engine.list_tables.failed", error=str(error))
            return list(self.state.tables)

    async def _run_setup_script(self, record: DatasetRecord, token: int) -> list[str]:
        before = await self.session.list_tables()
        self._check(token)
        for statement in split_statements(strip_comments(record.creation_sql)):
            await self.session.execute(statement)
            self._check(token)
        after = await self.session.list_tables()
        self._check(token)

        known = {name.lower() for name in before}
        delta = [name for name in after if name.lower() not in known]
        if delta:
            return _order_delta(delta, record.creation_sql)
        declared = (record.table_name or "").lower()
        if declared:
            return [name for name in after if name.lower() == declared][:1]
        return []

    async def execute(self, sql: str) -> dict[str, object]:
        """Run learner SQL; failures are returned, never raised."""
        if not self.is_ready:
            return {"error": self.state.error or ENGINE_NOT_READY_MESSAGE}
        if not sql or not sql.strip():
            return {"error": "Query is empty."}
        result = None
        try:
            with measure_engine("execute", question_id=self.state.question_id):
                for statement in split_statements(strip_comments(sql)):
                    result = await self.session.execute(statement)
        except EngineStatementError as error:
            log_event(LOGGER, "engine.execute.rejected", question_id=self.state.question_id, error=str(error))
            return {"error": str(error)}
        if result is None:
            return {"error": "Query is empty."}
        return {"columns": result.columns, "rows": result.rows}

    async def preview_table(self, name: str, *, limit: int) -> DatasetPreview | None:
        if name not in self.state.tables:
            return None
        try:
            result = await self.session.execute(f"SELECT * FROM {quote_identifier(name)} LIMIT {int(limit)}")
        except EngineStatementError as error:
            log_warning_event(LOGGER, "engine.preview.failed", table=name, error=str(error))
            return None
        return build_preview(result.columns, result.rows, row_cap=limit)
