from __future__ import annotations

import asyncio
import json
import sys
from pathlib import Path

import pandas as pd
import streamlit as st

ROOT_DIR = Path(__file__).resolve().parents[2]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from practice_lab.services.dataset_fetcher import QuestionDatasetClient  # noqa: E402
from practice_lab.services.dataset_models import SubjectType  # noqa: E402
from practice_lab.services.normalizer import question_id, question_subject_type  # noqa: E402
from practice_lab.services.workspace import PracticeWorkspace, WorkspaceError, build_workspace  # noqa: E402
from practice_lab.utils.caching import cache_resource  # noqa: E402
from practice_lab.utils.config import get_data_root  # noqa: E402
from practice_lab.utils.constants import NO_PREVIEW_MESSAGE  # noqa: E402
from practice_lab.utils.logging import get_logger, log_event  # noqa: E402
from practice_lab.utils.session_state import (  # noqa: E402
    confirm_reset,
    ensure_session_defaults,
    request_reset,
    select_question,
    session_resource,
    update_session_state,
)

LOGGER = get_logger(__name__)


@cache_resource
def _get_dataset_client() -> QuestionDatasetClient:
    return QuestionDatasetClient()


def _get_workspace() -> PracticeWorkspace:
    # Each browser session owns its engine, interpreter namespace and preview cache.
    return session_resource("workspace", lambda: build_workspace(fetcher=_get_dataset_client()))


def _question_files() -> list[Path]:
    folder = get_data_root() / "questions"
    if not folder.exists():
        return []
    return sorted(folder.glob("*.json"))


def _load_question(raw: str) -> dict[str, object] | None:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as error:
        st.error(f"Question payload is not valid JSON: {error}")
        return None
    if not isinstance(payload, dict):
        st.error("Question payload must be a JSON object.")
        return None
    return payload


def _render_question_picker() -> dict[str, object] | None:
    files = _question_files()
    source = st.radio("Question source", ["File", "Paste JSON"], horizontal=True)
    if source == "File":
        if not files:
            st.info("No question files found under the data root `questions/` folder.")
            return None
        chosen = st.selectbox("Question file", files, format_func=lambda path: path.stem)
        return _load_question(Path(chosen).read_text(encoding="utf-8")) if chosen else None
    raw = st.text_area("Question JSON", height=200)
    return _load_question(raw) if raw.strip() else None


def _activate(workspace: PracticeWorkspace, question: dict[str, object], exercise_id: str | None) -> None:
    state = st.session_state
    changed = select_question(state, question_id=question_id(question), exercise_id=exercise_id)
    if not changed and state.get("question_payload") == question:
        return
    update_session_state(state, question_payload=question)
    with st.spinner("Preparing datasets..."):
        asyncio.run(workspace.activate(question, exercise_id=exercise_id))
    log_event(LOGGER, "page.practice.activated", question_id=question_id(question))


def _render_engine_status(workspace: PracticeWorkspace) -> None:
    active = workspace.active
    if active is None:
        return
    if active.subject_type is SubjectType.PYTHON:
        frames = workspace.bridge.to_dict()["datasets"]
        for entry in frames:
            label = f"`{entry['variableName']}`: {entry['status']}"
            if entry["status"] == "failed":
                st.warning(f"{label} ({entry['message']})")
                if st.button("Retry", key=f"retry-{entry['datasetId']}"):
                    asyncio.run(workspace.retry_interpreter(entry["datasetId"]))
                    st.rerun()
            else:
                st.caption(label)
        return

    engine = workspace.coordinator.state
    if engine.status.value == "failed":
        st.error(f"Dataset preparation failed: {engine.error}")
        if st.button("Retry preparation"):
            asyncio.run(workspace.retry_engine())
            st.rerun()
    else:
        st.caption(f"Engine status: {engine.status.value}. Tables: {', '.join(engine.tables) or 'none'}")


def _render_previews(workspace: PracticeWorkspace) -> None:
    try:
        variants = workspace.variants()
    except WorkspaceError:
        return
    if not variants:
        st.info(NO_PREVIEW_MESSAGE)
        return

    labels = {variant.id: variant.label for variant in variants}
    selected = st.session_state.get("selected_variant_id")
    index = list(labels).index(selected) if selected in labels else 0
    variant_id = st.selectbox(
        "Dataset",
        list(labels),
        index=index,
        format_func=lambda key: labels[key],
    )
    update_session_state(st.session_state, selected_variant_id=variant_id)

    preview = asyncio.run(workspace.preview(variant_id))
    if preview is None:
        st.info(NO_PREVIEW_MESSAGE)
        return
    st.dataframe(pd.DataFrame(preview.rows, columns=preview.columns), use_container_width=True)
    exported = asyncio.run(workspace.export_workbook(variant_id))
    if exported is not None:
        filename, content = exported
        st.download_button("Download workbook", data=content, file_name=filename)


def _render_editor(workspace: PracticeWorkspace) -> None:
    active = workspace.active
    if active is None:
        return
    language = "python" if active.subject_type is SubjectType.PYTHON else "sql"
    code = st.text_area(f"Your {language.upper()} code", value=st.session_state.get("editor_code", ""), height=220)
    update_session_state(st.session_state, editor_code=code)

    run_col, reset_col = st.columns([1, 1])
    if run_col.button("Run", type="primary"):
        result = asyncio.run(workspace.run(code))
        update_session_state(st.session_state, last_result=result)
    if reset_col.button("Reset editor"):
        request_reset(st.session_state, reason="editor")
        confirm_reset(st.session_state)
        st.rerun()

    result = st.session_state.get("last_result")
    if not result:
        return
    if "error" in result:
        st.error(result["error"])
    elif "output" in result:
        st.code(result["output"])
    else:
        st.dataframe(pd.DataFrame(result["rows"], columns=result["columns"]), use_container_width=True)


def main() -> None:
    st.set_page_config(page_title="Practice", page_icon="🧪", layout="wide")
    ensure_session_defaults(st.session_state)
    st.title("Practice")

    workspace = _get_workspace()
    exercise_id = st.sidebar.text_input("Exercise", value=st.session_state.get("active_exercise_id") or "")
    question = _render_question_picker()
    if question is None:
        return

    _activate(workspace, question, exercise_id or None)
    active = workspace.active
    if active is not None and active.text:
        st.markdown(active.text)
    st.caption(f"Question type: {question_subject_type(question).value}")

    _render_engine_status(workspace)
    st.divider()
    _render_previews(workspace)
    st.divider()
    _render_editor(workspace)


main()
