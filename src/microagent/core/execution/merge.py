from __future__ import annotations

from typing import Any, Callable

from microagent.core.errors import InvariantViolation

from .schemas import StepResult


def _successful(results: list[StepResult]) -> list[StepResult]:
    return sorted((result for result in results if result.success), key=lambda result: result.order)


def _concat(results: list[StepResult]) -> Any:
    return "\n".join(str(result.output) for result in _successful(results) if result.output is not None) or None


def _ranked(results: list[StepResult]) -> Any:
    ranked = sorted(_successful(results), key=lambda result: len(str(result.output or "")), reverse=True)
    return "\n".join(str(result.output) for result in ranked if result.output is not None) or None


def _first(results: list[StepResult]) -> Any:
    successful = _successful(results)
    return successful[0].output if successful else None


MERGE_POLICIES: dict[str, Callable[[list[StepResult]], Any]] = {
    "concat": _concat,
    "ranked": _ranked,
    "first": _first,
}


def merge_outputs(policy: str, results: list[StepResult]) -> Any:
    try:
        merge = MERGE_POLICIES[policy]
    except KeyError:
        raise InvariantViolation(f"unknown merge policy {policy!r}", stage="execution") from None
    return merge(results)


def last_successful_output(results: list[StepResult]) -> Any:
    successful = _successful(results)
    return successful[-1].output if successful else None
