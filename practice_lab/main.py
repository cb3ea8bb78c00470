from __future__ import annotations

import sys
from pathlib import Path

import streamlit as st

# Ensure package imports work when launched as a file via `streamlit run practice_lab/main.py`.
ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from practice_lab.utils.config import get_data_root, load_engine_config  # noqa: E402
from practice_lab.utils.logging import DEFAULT_LOG_DIR  # noqa: E402

APP_TITLE = "Practice Lab"


def _ensure_directory(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def prepare_data_directories() -> Path:
    data_root = get_data_root()
    _ensure_directory(data_root)
    _ensure_directory(data_root / "questions")
    _ensure_directory(DEFAULT_LOG_DIR)
    return data_root


def render_home(data_root: Path) -> None:
    st.title(APP_TITLE)
    st.caption("Practice SQL and pandas questions against real datasets.")

    engine = load_engine_config()
    st.info(f"Analytical engine: `{engine.backend}` ({engine.database}). Question files: `{data_root / 'questions'}`")

    st.divider()
    st.markdown(
        """
        ### Workflow
        1. Open **Practice** and pick a question file or paste a question payload.
        2. Browse the attached datasets; each table of a setup script is its own preview.
        3. Write a query or pandas snippet and run it against the prepared engine.
        """
    )


def run() -> None:
    st.set_page_config(page_title=APP_TITLE, page_icon="🧪", layout="wide")
    data_root = prepare_data_directories()

    with st.sidebar:
        st.header("Navigation")
        st.markdown("- **Practice**: Load a question, preview its datasets, run code.")
        st.divider()
        st.caption("Datasets are loaded into an in-process engine. Nothing leaves your machine.")

    render_home(data_root)


if __name__ == "__main__":
    run()
