from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)
conversation_id_var: ContextVar[str | None] = ContextVar("conversation_id", default=None)
request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
plan_id_var: ContextVar[str | None] = ContextVar("plan_id", default=None)
step_id_var: ContextVar[str | None] = ContextVar("step_id", default=None)

_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    "correlation_id": correlation_id_var,
    "conversation_id": conversation_id_var,
    "request_id": request_id_var,
    "plan_id": plan_id_var,
    "step_id": step_id_var,
}


def set_context(**kwargs: str | None) -> dict[str, Token[str | None]]:
    tokens: dict[str, Token[str | None]] = {}
    for key, value in kwargs.items():
        var = _CONTEXT_VARS.get(key)
        if var is None:
            continue
        tokens[key] = var.set(value)
    return tokens


def reset_context(tokens: dict[str, Token[str | None]]) -> None:
    for key, token in tokens.items():
        var = _CONTEXT_VARS.get(key)
        if var is not None:
            var.reset(token)


@contextmanager
def log_context(**kwargs: str | None) -> Iterator[None]:
    """Bind correlation keys for every record logged inside the block.

    Keys that are not omitted keep their outer value; unknown keys are ignored.
    """
    tokens = set_context(**{key: value for key, value in kwargs.items() if value is not None})
    try:
        yield
    finally:
        reset_context(tokens)


def get_log_context() -> dict[str, str]:
    values = {key: var.get() for key, var in _CONTEXT_VARS.items()}
    return {key: value for key, value in values.items() if value is not None}
