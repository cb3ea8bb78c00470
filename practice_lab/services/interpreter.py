from __future__ import annotations

import asyncio
import io
import keyword
import re
import threading
import traceback
from collections.abc import Iterable, Sequence
from contextlib import redirect_stderr, redirect_stdout
from dataclasses import dataclass
from enum import Enum
from typing import Any

import pandas as pd

from practice_lab.services.dataset_models import DatasetRecord
from practice_lab.utils.constants import (
    GENERATED_TABLE_PREFIX,
    INTERPRETER_NO_OUTPUT_MESSAGE,
    NO_ROWS_TO_LOAD_MESSAGE,
)
from practice_lab.utils.logging import get_logger, log_event, log_warning_event

LOGGER = get_logger(__name__)

_NON_IDENTIFIER = re.compile(r"[^0-9a-zA-Z_]")


def derive_variable_name(preferred: str | None, index: int, taken: Iterable[str] = ()) -> str:
    """Sanitize a dataset or table name into a Python identifier.

    ``index`` is zero-based and only used for the ``dataset_N`` fallback.
    """
    candidate = _NON_IDENTIFIER.sub("_", (preferred or "").strip()).lower()
    if not candidate.strip("_"):
        candidate = f"{GENERATED_TABLE_PREFIX}_{index + 1}"
    if candidate[0].isdigit():
        candidate = f"_{candidate}"
    if keyword.iskeyword(candidate):
        candidate = f"{candidate}_"

    used = set(taken)
    if candidate not in used:
        return candidate
    suffix = 2
    while f"{candidate}_{suffix}" in used:
        suffix += 1
    return f"{candidate}_{suffix}"


def rows_to_frame(columns: Sequence[str], rows: Sequence[dict[str, Any]]) -> pd.DataFrame:
    return pd.DataFrame.from_records(list(rows), columns=list(columns))


class LoadStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    FAILED = "failed"


@dataclass(slots=True)
class InterpreterLoadState:
    dataset_id: str
    variable_name: str
    status: LoadStatus = LoadStatus.IDLE
    message: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "datasetId": self.dataset_id,
            "variableName": self.variable_name,
            "status": self.status.value,
            "message": self.message,
        }


class InterpreterRuntime:
    """In-process Python namespace with pandas preloaded.

    Learner code runs with the interpreter's full privileges; this is a practice
    sandbox for trusted local use, not an isolation boundary.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.namespace: dict[str, Any] = {}
        self.reset()

    def reset(self) -> None:
        with self._lock:
            self.namespace = {"__name__": "__practice__", "pd": pd}

    def load_frame(self, name: str, frame: pd.DataFrame) -> None:
        with self._lock:
            self.namespace[name] = frame

    def has_variable(self, name: str) -> bool:
        return name in self.namespace

    def _run(self, code: str) -> tuple[str, str | None]:
        stdout = io.StringIO()
        stderr = io.StringIO()
        with self._lock, redirect_stdout(stdout), redirect_stderr(stderr):
            try:
                exec(compile(code, "<practice>", "exec"), self.namespace)
            except Exception as error:  # learner code may raise anything
                detail = "".join(traceback.format_exception_only(type(error), error)).strip()
                return stdout.getvalue(), detail
        return stdout.getvalue() + stderr.getvalue(), None

    def run_setup(self, script: str) -> str | None:
        """Execute a dataset setup script; returns the error message on failure."""
        _output, error = self._run(script)
        return error

    def execute(self, code: str) -> dict[str, str]:
        if not code or not code.strip():
            return {"error": "Code is empty."}
        output, error = self._run(code)
        if error is not None:
            return {"error": error}
        return {"output": output.rstrip("\n") or INTERPRETER_NO_OUTPUT_MESSAGE}


class InterpreterBridge:
    """Loads a question's datasets into the interpreter runtime as DataFrames."""

    def __init__(self, runtime: InterpreterRuntime) -> None:
        self.runtime = runtime
        self.question_id: str | None = None
        self.states: dict[str, InterpreterLoadState] = {}
        self._records: dict[str, DatasetRecord] = {}
        self._token = 0

    @property
    def token(self) -> int:
        return self._token

    def activate(self, question_id: str | None, records: Sequence[DatasetRecord]) -> dict[str, InterpreterLoadState]:
        """Rebuild the load-state map for a newly active question.

        Frames from earlier questions stay bound in the runtime.
        """
        self._token += 1
        self.question_id = question_id
        self._records = {}
        self.states = {}
        taken = {name for name in self.runtime.namespace if not name.startswith("__")}
        for index, record in enumerate(records):
            if record.id in self._records:
                continue
            variable = derive_variable_name(record.table_name or record.name, index, taken)
            taken.add(variable)
            state = InterpreterLoadState(dataset_id=record.id, variable_name=variable)
            if not record.rows and not record.creation_python:
                state.status = LoadStatus.FAILED
                state.message = NO_ROWS_TO_LOAD_MESSAGE
            self._records[record.id] = record
            self.states[record.id] = state
        log_event(
            LOGGER,
            "interpreter.activated",
            question_id=question_id,
            datasets=len(self.states),
            token=self._token,
        )
        return self.states

    async def load_all(self) -> dict[str, InterpreterLoadState]:
        token = self._token
        for dataset_id, state in list(self.states.items()):
            if token != self._token:
                break
            if state.status is LoadStatus.IDLE:
                await self._load(dataset_id, token)
        return self.states

    async def retry(self, dataset_id: str) -> InterpreterLoadState | None:
        state = self.states.get(dataset_id)
        if state is None:
            return None
        if state.status is LoadStatus.LOADED:
            return state
        record = self._records[dataset_id]
        if not record.rows and not record.creation_python:
            return state
        await self._load(dataset_id, self._token)
        return self.states.get(dataset_id)

    async def _load(self, dataset_id: str, token: int) -> None:
        record = self._records[dataset_id]
        state = self.states[dataset_id]
        state.status = LoadStatus.LOADING
        state.message = None

        error: str | None = None
        if record.rows:
            frame = rows_to_frame(record.columns, record.rows)
            await asyncio.to_thread(self.runtime.load_frame, state.variable_name, frame)
        else:
            error = await asyncio.to_thread(self.runtime.run_setup, record.creation_python or "")

        if token != self._token or self.states.get(dataset_id) is not state:
            log_event(LOGGER, "interpreter.load.stale", dataset_id=dataset_id, token=token)
            return
        if error is not None:
            state.status = LoadStatus.FAILED
            state.message = error
            log_warning_event(LOGGER, "interpreter.load.failed", dataset_id=dataset_id, error=error)
            return
        state.status = LoadStatus.LOADED
        log_event(
            LOGGER,
            "interpreter.load.complete",
            dataset_id=dataset_id,
            variable=state.variable_name,
            rows=len(record.rows),
        )

    async def execute(self, code: str) -> dict[str, str]:
        return await asyncio.to_thread(self.runtime.execute, code)

    def to_dict(self) -> dict[str, object]:
        return {
            "questionId": self.question_id,
            "datasets": [state.to_dict() for state in self.states.values()],
        }
