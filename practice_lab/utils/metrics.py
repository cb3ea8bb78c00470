from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import UTC, datetime
from time import perf_counter
from typing import Any

from practice_lab.utils.logging import get_logger

LOGGER = get_logger(__name__)


def emit_engine_metric(event: str, **fields: Any) -> dict[str, Any]:
    """Lightweight metrics stub that returns the payload and logs it for observability."""
    payload = {"event": _normalize_event(event), "timestamp": datetime.now(UTC).isoformat(), **fields}
    _log_payload(payload)
    return payload


def timing_payload(event: str, *, elapsed_ms: float, **fields: Any) -> dict[str, Any]:
    return {
        "event": f"{_normalize_event(event)}.timing",
        "elapsed_ms": elapsed_ms,
        "timestamp": datetime.now(UTC).isoformat(),
        **fields,
    }


def emit_engine_timing(event: str, *, elapsed_ms: float, **fields: Any) -> dict[str, Any]:
    payload = timing_payload(event, elapsed_ms=elapsed_ms, **fields)
    _log_payload(payload)
    return payload


@contextmanager
def measure_engine(event: str, **fields: Any):
    """Context manager to emit timing metrics around engine operations."""
    start = perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (perf_counter() - start) * 1000
        emit_engine_timing(event, elapsed_ms=elapsed_ms, **fields)


def _normalize_event(event: str) -> str:
    return event if event.startswith("engine.") else f"engine.{event}"


def _log_payload(payload: dict[str, Any]) -> None:
    try:
        LOGGER.info(json.dumps(payload))
    except (TypeError, ValueError):
        LOGGER.info("%s %s", payload.get("event", "engine.metric"), payload)
