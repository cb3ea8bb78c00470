from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

DEFAULT_DATA_ROOT = Path("./data")
DEFAULT_PREVIEW_ROW_CAP = 20
DEFAULT_ENGINE_BACKEND = "duckdb"
DEFAULT_ENGINE_DATABASE = ":memory:"
DEFAULT_DATASET_API_TIMEOUT = 10.0
PREVIEW_ROW_CAP_ENV = "PRACTICE_PREVIEW_ROW_CAP"
ENGINE_BACKEND_ENV = "PRACTICE_ENGINE_BACKEND"
ENGINE_DATABASE_ENV = "PRACTICE_ENGINE_DATABASE"
DATASET_API_BASE_URL_ENV = "DATASET_API_BASE_URL"
DATASET_API_TIMEOUT_ENV = "DATASET_API_TIMEOUT"

EngineBackend = Literal["duckdb", "sqlite"]


@dataclass(frozen=True)
class PreviewConfig:
    row_cap: int


@dataclass(frozen=True)
class EngineConfig:
    backend: EngineBackend
    database: str


@dataclass(frozen=True)
class DatasetApiConfig:
    base_url: str | None
    timeout_seconds: float


def get_data_root() -> Path:
    return Path(os.getenv("DATA_ROOT", DEFAULT_DATA_ROOT)).expanduser()


def load_preview_config() -> PreviewConfig:
    row_cap = int(os.getenv(PREVIEW_ROW_CAP_ENV, DEFAULT_PREVIEW_ROW_CAP))
    return PreviewConfig(row_cap=max(1, row_cap))


def load_engine_config() -> EngineConfig:
    backend = (os.getenv(ENGINE_BACKEND_ENV) or DEFAULT_ENGINE_BACKEND).strip().lower()
    if backend not in {"duckdb", "sqlite"}:
        raise ValueError(f"Unsupported engine backend '{backend}'; expected 'duckdb' or 'sqlite'.")
    database = os.getenv(ENGINE_DATABASE_ENV) or DEFAULT_ENGINE_DATABASE
    return EngineConfig(
        backend="sqlite" if backend == "sqlite" else "duckdb",
        database=database,
    )


def load_dataset_api_config() -> DatasetApiConfig:
    base_url = os.getenv(DATASET_API_BASE_URL_ENV)
    timeout = float(os.getenv(DATASET_API_TIMEOUT_ENV, DEFAULT_DATASET_API_TIMEOUT))
    return DatasetApiConfig(
        base_url=base_url.rstrip("/") if base_url else None,
        timeout_seconds=timeout,
    )
