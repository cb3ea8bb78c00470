from __future__ import annotations

from collections.abc import Callable, MutableMapping, Sequence
from copy import deepcopy
from datetime import UTC, datetime
from typing import Any, TypeVar

SessionStore = MutableMapping[str, Any]
T = TypeVar("T")

SESSION_DEFAULTS: dict[str, Any] = {
    "active_exercise_id": None,
    "active_subject_id": None,
    "active_question_id": None,
    "selected_variant_id": None,
    "question_payload": None,
    "editor_code": "",
    "last_result": None,
    "reset_requested": False,
    "reset_reason": None,
    "last_reset_at": None,
}


def _get_store(store: SessionStore | None) -> SessionStore:
    if store is not None:
        return store
    try:
        import streamlit as st  # type: ignore
    except (
        ModuleNotFoundError
    ) as error:  # pragma: no cover - Streamlit only available in app runtime
        raise RuntimeError("Streamlit session state is unavailable outside the app.") from error
    return st.session_state


def ensure_session_defaults(
    store: SessionStore | None = None,
    *,
    defaults: dict[str, Any] | None = None,
) -> SessionStore:
    """Populate default keys without overwriting existing selections."""
    state = _get_store(store)
    baseline = defaults or SESSION_DEFAULTS
    for key, value in baseline.items():
        if key not in state:
            state[key] = deepcopy(value)
    return state


def update_session_state(store: SessionStore | None = None, **updates: object) -> SessionStore:
    """Update session state with provided values after defaults are ensured."""
    state = ensure_session_defaults(store)
    for key, value in updates.items():
        state[key] = value
    return state


def session_resource(key: str, factory: Callable[[], T], store: SessionStore | None = None) -> T:
    """Return the object this session keeps under ``key``, building it on first use."""
    state = _get_store(store)
    resource = state.get(key)
    if resource is None:
        resource = factory()
        state[key] = resource
    return resource


def select_question(
    store: SessionStore | None = None,
    *,
    question_id: str | None,
    exercise_id: str | None = None,
    subject_id: str | None = None,
) -> bool:
    """Record the active question; returns True when the selection actually changed.

    Switching questions clears the variant choice and the previous run output so a
    stale result never renders against a different dataset.
    """
    state = ensure_session_defaults(store)
    changed = (
        state.get("active_question_id") != question_id
        or state.get("active_exercise_id") != exercise_id
        or state.get("active_subject_id") != subject_id
    )
    state["active_question_id"] = question_id
    state["active_exercise_id"] = exercise_id
    state["active_subject_id"] = subject_id
    if changed:
        state["selected_variant_id"] = None
        state["last_result"] = None
    return changed


def request_reset(store: SessionStore | None = None, *, reason: str | None = None) -> bool:
    """Mark the session as pending reset with an optional reason."""
    state = ensure_session_defaults(store)
    state["reset_requested"] = True
    state["reset_reason"] = reason
    return True


def confirm_reset(
    store: SessionStore | None = None,
    *,
    keys: Sequence[str] | None = None,
) -> bool:
    """Apply a reset to selected keys only after a request flag is set."""
    state = ensure_session_defaults(store)
    if not state.get("reset_requested"):
        return False

    targets = keys or ("selected_variant_id", "editor_code", "last_result")
    for key in targets:
        if key in SESSION_DEFAULTS:
            state[key] = deepcopy(SESSION_DEFAULTS[key])
        else:
            state.pop(key, None)

    state["reset_requested"] = False
    state["last_reset_at"] = datetime.now(UTC)
    state["reset_reason"] = None
    return True
