from __future__ import annotations

from collections.abc import Callable
from typing import ParamSpec, TypeVar

import streamlit as st

P = ParamSpec("P")
T = TypeVar("T")


def cache_resource(func: Callable[P, T]) -> Callable[P, T]:
    """Share ``func``'s result across every browser session of the app.

    Only stateless resources such as HTTP clients belong here. Anything holding a
    learner's engine, interpreter namespace or previews lives in session state.
    """
    return st.cache_resource(show_spinner=False)(func)
