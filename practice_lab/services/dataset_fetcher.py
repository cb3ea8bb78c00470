from __future__ import annotations

from typing import Any

import httpx

from practice_lab.utils.config import DatasetApiConfig, load_dataset_api_config
from practice_lab.utils.logging import get_logger, log_event

LOGGER = get_logger(__name__)

DATASET_PATH_TEMPLATE = "/v1/sections/questions/{question_id}/dataset"


class DatasetFetchError(RuntimeError):
    """Raised when the dataset service cannot return a question's dataset."""


class QuestionDatasetClient:
    """Fetches the authoritative dataset descriptor for a question over HTTP."""

    def __init__(
        self,
        config: DatasetApiConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config or load_dataset_api_config()
        self._transport = transport

    @property
    def enabled(self) -> bool:
        return bool(self.config.base_url)

    async def fetch(self, question_id: str) -> Any | None:
        """Return the dataset payload, or None when the service has none for this question."""
        if not self.config.base_url:
            return None
        path = DATASET_PATH_TEMPLATE.format(question_id=question_id)
        async with httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=httpx.Timeout(self.config.timeout_seconds),
            transport=self._transport,
        ) as client:
            try:
                response = await client.get(path)
            except httpx.HTTPError as error:
                raise DatasetFetchError(f"Dataset request for question {question_id} failed: {error}") from error

        if response.status_code == 404:
            log_event(LOGGER, "dataset_fetch.missing", question_id=question_id)
            return None
        if response.status_code >= 400:
            raise DatasetFetchError(
                f"Dataset service returned {response.status_code} for question {question_id}"
            )
        try:
            payload = response.json()
        except ValueError as error:
            raise DatasetFetchError(f"Dataset service returned invalid JSON for question {question_id}") from error

        if isinstance(payload, dict) and "data" in payload:
            payload = payload["data"]
        log_event(LOGGER, "dataset_fetch.complete", question_id=question_id, found=payload is not None)
        return payload
