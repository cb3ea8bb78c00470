from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from practice_lab.services.dataset_models import DatasetPreview, DatasetRecord
from practice_lab.utils.config import load_preview_config
from practice_lab.utils.logging import get_logger, log_event

LOGGER = get_logger(__name__)

PreviewResolver = Callable[[], DatasetPreview | None]
AsyncPreviewResolver = Callable[[], Awaitable[DatasetPreview | None]]


def preview_scope_key(
    exercise_id: str | None,
    subject_id: str | None = None,
    question_id: str | None = None,
) -> str | None:
    """Previews are scoped per exercise, falling back to the subject and then the question."""
    if exercise_id:
        return f"exercise:{exercise_id}"
    if subject_id:
        return f"subject:{subject_id}"
    if question_id:
        return f"question:{question_id}"
    return None


def build_preview(
    columns: Sequence[str],
    rows: Sequence[dict[str, Any]] | Sequence[Sequence[Any]],
    *,
    row_cap: int,
) -> DatasetPreview | None:
    """Rectangular, row-capped sample; mapping rows are read in column order."""
    if not columns:
        return None
    names = [str(column) for column in columns]
    sample: list[list[Any]] = []
    for row in list(rows)[:row_cap]:
        if isinstance(row, dict):
            sample.append([row.get(name) for name in names])
        else:
            values = list(row)[: len(names)]
            sample.append(values + [None] * (len(names) - len(values)))
    return DatasetPreview(columns=names, rows=sample)


def preview_from_record(record: DatasetRecord, *, row_cap: int) -> DatasetPreview | None:
    return build_preview(record.columns, record.rows, row_cap=row_cap)


class PreviewCache:
    """Scope-keyed memo of resolved previews.

    Entries are write-once within a scope; moving to another scope clears them.
    """

    def __init__(self, *, row_cap: int | None = None) -> None:
        self.row_cap = row_cap or load_preview_config().row_cap
        self._scope: str | None = None
        self._generation = 0
        self._entries: dict[str, DatasetPreview] = {}

    @property
    def scope(self) -> str | None:
        return self._scope

    def use_scope(self, scope_key: str | None) -> bool:
        """Activate ``scope_key``; returns True when the cache was cleared."""
        if scope_key == self._scope:
            return False
        log_event(
            LOGGER,
            "preview_cache.scope.changed",
            previous=self._scope,
            scope=scope_key,
            dropped=len(self._entries),
        )
        self._scope = scope_key
        self._generation += 1
        self._entries = {}
        return True

    def get(self, key: str) -> DatasetPreview | None:
        return self._entries.get(key)

    def store(self, key: str, preview: DatasetPreview) -> DatasetPreview:
        existing = self._entries.get(key)
        if existing is not None:
            return existing
        capped = DatasetPreview(columns=list(preview.columns), rows=list(preview.rows)[: self.row_cap])
        self._entries[key] = capped
        return capped

    def resolve(self, key: str, resolver: PreviewResolver) -> DatasetPreview | None:
        """Serve ``key`` from the cache or run ``resolver`` once and remember a non-empty result."""
        cached = self._entries.get(key)
        if cached is not None:
            return cached
        preview = resolver()
        if preview is None or preview.is_empty:
            return None
        return self.store(key, preview)

    async def resolve_async(
        self,
        key: str,
        resolver: AsyncPreviewResolver,
        *,
        is_current: Callable[[], bool] | None = None,
    ) -> DatasetPreview | None:
        """Async variant of ``resolve``.

        A result that completes after the scope changed, or after ``is_current``
        turns false, is dropped instead of being stored under the new scope.
        """
        cached = self._entries.get(key)
        if cached is not None:
            return cached
        generation = self._generation
        preview = await resolver()
        if generation != self._generation or (is_current is not None and not is_current()):
            log_event(LOGGER, "preview_cache.resolve.stale", key=key, scope=self._scope)
            return None
        if preview is None or preview.is_empty:
            return None
        return self.store(key, preview)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
