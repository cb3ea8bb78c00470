from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import FastAPI, HTTPException, Response, status
from pydantic import BaseModel, ConfigDict, Field

from practice_lab.services.dataset_models import SubjectType
from practice_lab.services.normalizer import normalize
from practice_lab.services.preview_cache import preview_from_record
from practice_lab.services.workspace import PracticeWorkspace, WorkspaceError, build_workspace
from practice_lab.utils.config import load_preview_config
from practice_lab.utils.constants import NO_PREVIEW_MESSAGE

LOGGER = logging.getLogger(__name__)

WORKBOOK_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class NormalizeRequest(BaseModel):
    descriptor: Any = None
    name: Annotated[str | None, Field(alias="name", default=None)]
    subject_type: Annotated[SubjectType | None, Field(alias="subjectType", default=None)]

    model_config = ConfigDict(populate_by_name=True)


class NormalizeResponse(BaseModel):
    record: dict[str, Any] | None = None
    preview: dict[str, Any] | None = None
    message: str | None = None


class ActivateQuestionRequest(BaseModel):
    question: dict[str, Any]
    exercise_id: Annotated[str | None, Field(alias="exerciseId", default=None)]
    subject_id: Annotated[str | None, Field(alias="subjectId", default=None)]

    model_config = ConfigDict(populate_by_name=True)


class VariantOption(BaseModel):
    id: str
    label: str
    table_name: Annotated[str | None, Field(alias="tableName", default=None)]

    model_config = ConfigDict(populate_by_name=True)


class PreviewResponse(BaseModel):
    variant_id: Annotated[str, Field(alias="variantId")]
    columns: list[str]
    rows: list[list[Any]]

    model_config = ConfigDict(populate_by_name=True)


class ExecuteRequest(BaseModel):
    code: str = Field(default="")


def create_app(*, workspace: PracticeWorkspace | None = None) -> FastAPI:
    """Create a FastAPI instance exposing dataset previews and practice execution."""
    app = FastAPI(
        title="Practice Lab API",
        version="0.1.0",
    )
    active_workspace = workspace or build_workspace()
    app.state.workspace = active_workspace

    @app.post("/api/datasets/normalize", response_model=NormalizeResponse)
    def normalize_descriptor(payload: NormalizeRequest) -> NormalizeResponse:
        record = normalize(payload.descriptor, fallback_name=payload.name, subject_type=payload.subject_type)
        if record is None:
            return NormalizeResponse(message=NO_PREVIEW_MESSAGE)
        preview = preview_from_record(record, row_cap=load_preview_config().row_cap)
        return NormalizeResponse(
            record=record.to_dict(),
            preview=preview.to_dict() if preview is not None else None,
            message=None if preview is not None else NO_PREVIEW_MESSAGE,
        )

    @app.post("/api/questions/activate")
    async def activate_question(payload: ActivateQuestionRequest) -> dict[str, object]:
        if not payload.question:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Question payload is empty.")
        return await active_workspace.activate(
            payload.question,
            exercise_id=payload.exercise_id,
            subject_id=payload.subject_id,
        )

    @app.get("/api/variants", response_model=list[VariantOption], response_model_by_alias=True)
    def list_variants() -> list[VariantOption]:
        try:
            variants = active_workspace.variants()
        except WorkspaceError as error:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error)) from error
        return [VariantOption.model_validate(variant.to_option()) for variant in variants]

    @app.get("/api/previews/{variant_id:path}/workbook")
    async def download_workbook(variant_id: str) -> Response:
        try:
            exported = await active_workspace.export_workbook(variant_id)
        except WorkspaceError as error:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error)) from error
        if exported is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NO_PREVIEW_MESSAGE)
        filename, content = exported
        return Response(
            content=content,
            media_type=WORKBOOK_MEDIA_TYPE,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    @app.get(
        "/api/previews/{variant_id:path}",
        response_model=PreviewResponse,
        response_model_by_alias=True,
    )
    async def get_preview(variant_id: str) -> PreviewResponse:
        try:
            preview = await active_workspace.preview(variant_id)
        except WorkspaceError as error:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error)) from error
        if preview is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NO_PREVIEW_MESSAGE)
        return PreviewResponse(variant_id=variant_id, columns=preview.columns, rows=preview.rows)

    @app.post("/api/execute")
    async def execute_code(payload: ExecuteRequest) -> dict[str, object]:
        if active_workspace.active is None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="No active question.")
        return await active_workspace.run(payload.code)

    @app.get("/api/engine/state")
    def engine_state() -> dict[str, object]:
        return active_workspace.coordinator.state.to_dict()

    @app.post("/api/engine/retry")
    async def retry_engine() -> dict[str, object]:
        try:
            await active_workspace.retry_engine()
        except WorkspaceError as error:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error)) from error
        return active_workspace.coordinator.state.to_dict()

    @app.get("/api/interpreter/datasets")
    def interpreter_datasets() -> dict[str, object]:
        return active_workspace.bridge.to_dict()

    @app.post("/api/interpreter/datasets/{dataset_id:path}/retry")
    async def retry_interpreter_dataset(dataset_id: str) -> dict[str, object]:
        try:
            return await active_workspace.retry_interpreter(dataset_id)
        except WorkspaceError as error:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error)) from error

    LOGGER.info("Practice Lab API ready")
    return app
