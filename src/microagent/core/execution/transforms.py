from __future__ import annotations

from typing import Any, Callable

from microagent.core.errors import StepExecutionError


def resolve_source(source: Any, outputs: dict[int, Any]) -> Any:
    """Pick earlier step output(s): ``"previous"``, ``"all"`` or an order index."""
    if not outputs:
        raise StepExecutionError("no earlier step output to read from")
    if source in (None, "previous"):
        return outputs[max(outputs)]
    if source == "all":
        return [outputs[order] for order in sorted(outputs)]
    try:
        return outputs[int(source)]
    except (KeyError, TypeError, ValueError) as exc:
        raise StepExecutionError(f"step output {source!r} is not available") from exc


def _join(value: Any, parameters: dict[str, Any]) -> str:
    items = value if isinstance(value, list) else [value]
    return str(parameters.get("separator", "\n")).join(str(item) for item in items)


def _template(value: Any, parameters: dict[str, Any]) -> str:
    template = parameters.get("template")
    if not template:
        raise StepExecutionError("template transform needs a 'template' parameter")
    try:
        return str(template).format(value=value)
    except (KeyError, IndexError, ValueError) as exc:
        raise StepExecutionError(f"bad template: {exc}") from exc


TRANSFORMS: dict[str, Callable[[Any, dict[str, Any]], Any]] = {
    "join": _join,
    "upper": lambda value, _: str(value).upper(),
    "lower": lambda value, _: str(value).lower(),
    "strip": lambda value, _: str(value).strip(),
    "template": _template,
}

CHECKS: dict[str, Callable[[Any, Any], bool]] = {
    "contains": lambda value, expected: str(expected).casefold() in str(value).casefold(),
    "equals": lambda value, expected: str(value) == str(expected),
    "non_empty": lambda value, _: bool(str(value).strip()) if value is not None else False,
}


def run_transform(parameters: dict[str, Any], outputs: dict[int, Any]) -> Any:
    op = str(parameters.get("op", "join"))
    transform = TRANSFORMS.get(op)
    if transform is None:
        raise StepExecutionError(f"unknown transform {op!r}")
    return transform(resolve_source(parameters.get("source"), outputs), parameters)


def run_check(parameters: dict[str, Any], outputs: dict[int, Any]) -> bool:
    check_name = str(parameters.get("check", "non_empty"))
    check = CHECKS.get(check_name)
    if check is None:
        raise StepExecutionError(f"unknown decision check {check_name!r}")
    return check(resolve_source(parameters.get("source"), outputs), parameters.get("value"))
