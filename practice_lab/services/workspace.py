from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from practice_lab.services.dataset_fetcher import DatasetFetchError, QuestionDatasetClient
from practice_lab.services.dataset_models import DatasetPreview, DatasetRecord, DatasetVariant, SubjectType
from practice_lab.services.engine_preparation import EnginePreparationCoordinator
from practice_lab.services.engine_session import create_engine_session
from practice_lab.services.interpreter import InterpreterBridge, InterpreterRuntime
from practice_lab.services.normalizer import (
    collect_question_datasets,
    question_id as resolve_question_id,
    question_subject_type,
    question_text,
)
from practice_lab.services.preview_cache import PreviewCache, preview_from_record, preview_scope_key
from practice_lab.services.variants import expand_all_variants
from practice_lab.services.workbook_export import export_preview_workbook, workbook_filename
from practice_lab.utils.logging import get_logger, log_event, log_timing, log_warning_event, question_context

LOGGER = get_logger(__name__)


class WorkspaceError(RuntimeError):
    """Raised for requests that need an active question or a known variant."""


@dataclass(slots=True)
class ActiveQuestion:
    question_id: str | None
    text: str
    subject_type: SubjectType
    exercise_id: str | None = None
    subject_id: str | None = None
    records: list[DatasetRecord] = field(default_factory=list)
    fetched: bool = False


def _has_usable_data(records: Sequence[DatasetRecord]) -> bool:
    return any(
        record.rows or record.columns or record.creation_sql or record.creation_python for record in records
    )


def _resolve_subject(declared: SubjectType, records: Sequence[DatasetRecord]) -> SubjectType:
    if declared is not SubjectType.UNKNOWN:
        return declared
    if any(record.subject_type is SubjectType.PYTHON or record.creation_python for record in records):
        return SubjectType.PYTHON
    return SubjectType.SQL


class PracticeWorkspace:
    """Ties dataset resolution, previews and the two execution engines to one active question."""

    def __init__(
        self,
        *,
        coordinator: EnginePreparationCoordinator,
        bridge: InterpreterBridge,
        fetcher: QuestionDatasetClient | None = None,
        cache: PreviewCache | None = None,
    ) -> None:
        self.coordinator = coordinator
        self.bridge = bridge
        self.fetcher = fetcher
        self.cache = cache or PreviewCache()
        self.active: ActiveQuestion | None = None
        self._activation = 0

    async def activate(
        self,
        question: Mapping[str, Any],
        *,
        exercise_id: str | None = None,
        subject_id: str | None = None,
    ) -> dict[str, object]:
        self._activation += 1
        activation = self._activation
        qid = resolve_question_id(question)
        self.cache.use_scope(preview_scope_key(exercise_id, subject_id, qid))

        records = collect_question_datasets(question)
        fetched = False
        if not _has_usable_data(records) and qid and self.fetcher is not None and self.fetcher.enabled:
            fetched_records = await self._fetch_records(qid, question)
            if activation != self._activation:
                return self.state()
            if fetched_records:
                records = fetched_records
                fetched = True

        subject_type = _resolve_subject(question_subject_type(question), records)
        self.active = ActiveQuestion(
            question_id=qid,
            text=question_text(question),
            subject_type=subject_type,
            exercise_id=exercise_id,
            subject_id=subject_id,
            records=records,
            fetched=fetched,
        )
        log_event(
            LOGGER,
            "workspace.question.activated",
            question_id=qid,
            subject_type=subject_type.value,
            datasets=len(records),
            fetched=fetched,
        )

        with question_context(qid), log_timing(LOGGER, "workspace.prepare", subject_type=subject_type.value):
            if subject_type is SubjectType.PYTHON:
                self.bridge.activate(qid, records)
                await self.bridge.load_all()
            else:
                await self.coordinator.prepare(qid, records)
        return self.state()

    async def _fetch_records(self, qid: str, question: Mapping[str, Any]) -> list[DatasetRecord]:
        try:
            payload = await self.fetcher.fetch(qid)
        except DatasetFetchError as error:
            log_warning_event(LOGGER, "workspace.dataset_fetch.failed", question_id=qid, error=str(error))
            return []
        if payload is None:
            return []
        subject = question_subject_type(question)
        return collect_question_datasets({"id": qid, "type": subject.value, "dataset": payload})

    def _require_active(self) -> ActiveQuestion:
        if self.active is None:
            raise WorkspaceError("No active question.")
        return self.active

    def _table_map(self) -> dict[str, list[str]]:
        active = self._require_active()
        state = self.coordinator.state
        if active.subject_type is SubjectType.PYTHON or state.question_id != active.question_id:
            return {}
        return state.table_map

    def variants(self) -> list[DatasetVariant]:
        active = self._require_active()
        return expand_all_variants(active.records, self._table_map())

    def find_variant(self, variant_id: str) -> DatasetVariant:
        for variant in self.variants():
            if variant.id == variant_id:
                return variant
        raise WorkspaceError(f"Unknown dataset variant '{variant_id}'.")

    async def preview(self, variant_id: str) -> DatasetPreview | None:
        variant = self.find_variant(variant_id)
        activation = self._activation
        # Variant ids repeat across questions that share a table name.
        key = f"{self._require_active().question_id or ''}::{variant.id}"

        async def resolve() -> DatasetPreview | None:
            if variant.table_name and variant.table_name in self.coordinator.state.tables:
                preview = await self.coordinator.preview_table(variant.table_name, limit=self.cache.row_cap)
                if preview is not None and not preview.is_empty:
                    return preview
            return preview_from_record(variant.record, row_cap=self.cache.row_cap)

        return await self.cache.resolve_async(key, resolve, is_current=lambda: activation == self._activation)

    async def export_workbook(self, variant_id: str) -> tuple[str, bytes] | None:
        variant = self.find_variant(variant_id)
        preview = await self.preview(variant_id)
        if preview is None:
            return None
        return workbook_filename(variant.label), export_preview_workbook(preview, title=variant.label)

    async def run(self, code: str) -> dict[str, object]:
        if self.active is None:
            return {"error": "No active question."}
        if self.active.subject_type is SubjectType.PYTHON:
            return await self.bridge.execute(code)
        return await self.coordinator.execute(code)

    async def retry_engine(self) -> dict[str, object]:
        self._require_active()
        await self.coordinator.retry()
        return self.state()

    async def retry_interpreter(self, dataset_id: str) -> dict[str, object]:
        self._require_active()
        if await self.bridge.retry(dataset_id) is None:
            raise WorkspaceError(f"Unknown interpreter dataset '{dataset_id}'.")
        return self.bridge.to_dict()

    def state(self) -> dict[str, object]:
        active = self.active
        return {
            "questionId": active.question_id if active else None,
            "subjectType": active.subject_type.value if active else None,
            "fetched": active.fetched if active else False,
            "datasets": [record.to_dict() for record in active.records] if active else [],
            "variants": [variant.to_option() for variant in self.variants()] if active else [],
            "engine": self.coordinator.state.to_dict(),
            "interpreter": self.bridge.to_dict(),
        }


def build_workspace(*, fetcher: QuestionDatasetClient | None = None) -> PracticeWorkspace:
    return PracticeWorkspace(
        coordinator=EnginePreparationCoordinator(create_engine_session()),
        bridge=InterpreterBridge(InterpreterRuntime()),
        fetcher=fetcher or QuestionDatasetClient(),
        cache=PreviewCache(),
    )
