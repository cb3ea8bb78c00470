from __future__ import annotations

from pathlib import Path

import pytest

from practice_lab.utils.config import (
    get_data_root,
    load_dataset_api_config,
    load_engine_config,
    load_preview_config,
)


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "PRACTICE_PREVIEW_ROW_CAP",
        "PRACTICE_ENGINE_BACKEND",
        "PRACTICE_ENGINE_DATABASE",
        "DATASET_API_BASE_URL",
        "DATASET_API_TIMEOUT",
    ):
        monkeypatch.delenv(name, raising=False)

    assert load_preview_config().row_cap == 20
    engine = load_engine_config()
    assert (engine.backend, engine.database) == ("duckdb", ":memory:")
    api = load_dataset_api_config()
    assert api.base_url is None
    assert api.timeout_seconds == 10.0


def test_environment_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PRACTICE_PREVIEW_ROW_CAP", "0")
    monkeypatch.setenv("PRACTICE_ENGINE_BACKEND", " SQLite ")
    monkeypatch.setenv("DATASET_API_BASE_URL", "http://datasets.local/")
    monkeypatch.setenv("DATASET_API_TIMEOUT", "2.5")

    assert load_preview_config().row_cap == 1
    assert load_engine_config().backend == "sqlite"
    api = load_dataset_api_config()
    assert api.base_url == "http://datasets.local"
    assert api.timeout_seconds == 2.5


def test_unknown_backend_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PRACTICE_ENGINE_BACKEND", "oracle")

    with pytest.raises(ValueError, match="oracle"):
        load_engine_config()


def test_data_root(temp_data_root: Path) -> None:
    assert get_data_root() == temp_data_root
