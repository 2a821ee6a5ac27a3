from __future__ import annotations

import pytest

from microagent.core.config.settings import ExecutionSettings
from microagent.core.errors import ErrorKind, InvariantViolation
from microagent.core.execution.engine import ExecutionEngine
from microagent.core.execution.schemas import ExecutionState
from microagent.core.planning.schemas import ExecutionPlan, ExecutionStep, PlanStrategy, StepType

from fakes import ScriptedInvoker, boom


def _tool(name: str, order: int, critical: bool = True) -> ExecutionStep:
    return ExecutionStep(description=f"Run {name}", type=StepType.TOOL_EXECUTION, tool_name=name, order=order, critical=critical)


def _engine(invoker: ScriptedInvoker, **settings) -> ExecutionEngine:
    return ExecutionEngine(ExecutionSettings(**settings), tool_invoker=invoker)


def test_sequential_steps_run_in_order_index_order(make_context) -> None:
    invoker = ScriptedInvoker({name: (lambda params, name=name: f"{name}-out") for name in ["a", "b", "c"]})
    # listed out of order on purpose
    plan = ExecutionPlan(strategy=PlanStrategy.SEQUENTIAL, steps=[_tool("c", 3), _tool("a", 1), _tool("b", 2)])

    result = _engine(invoker).execute(plan, make_context())

    assert invoker.calls == ["a", "b", "c"]
    assert [step.order for step in result.step_results] == [1, 2, 3]
    assert result.state is ExecutionState.SUCCEEDED
    assert result.success is True
    assert result.final_output == "c-out"
    assert [item.tool_name for item in result.tool_executions] == ["a", "b", "c"]


def test_critical_failure_halts_remaining_steps(make_context) -> None:
    invoker = ScriptedInvoker({"a": lambda params: "a-out", "b": boom(), "c": lambda params: "c-out"})
    plan = ExecutionPlan(strategy=PlanStrategy.SEQUENTIAL, steps=[_tool("a", 1), _tool("b", 2), _tool("c", 3)])

    result = _engine(invoker).execute(plan, make_context())

    assert invoker.calls == ["a", "b"]
    assert result.state is ExecutionState.FAILED
    assert result.success is False
    assert [step.success for step in result.step_results] == [True, False, False]
    assert result.step_results[1].error_kind is ErrorKind.STEP_EXECUTION
    assert result.step_results[2].error_kind is ErrorKind.CANCELLED
    assert result.error == "tool exploded"
    assert result.tool_executions[1].success is False


def test_non_critical_failure_lets_the_plan_continue(make_context) -> None:
    invoker = ScriptedInvoker({"a": lambda params: "a-out", "b": boom(), "c": lambda params: "c-out"})
    plan = ExecutionPlan(
        strategy=PlanStrategy.SEQUENTIAL,
        steps=[_tool("a", 1), _tool("b", 2, critical=False), _tool("c", 3)],
    )

    result = _engine(invoker).execute(plan, make_context())

    assert invoker.calls == ["a", "b", "c"]
    assert result.state is ExecutionState.PARTIALLY_FAILED
    assert result.success is False
    assert result.final_output == "c-out"
    assert result.succeeded_fraction == pytest.approx(2 / 3)


def test_data_transform_and_decision_steps_read_earlier_outputs(make_context) -> None:
    invoker = ScriptedInvoker({"greet": lambda params: "hello world"})
    plan = ExecutionPlan(
        strategy=PlanStrategy.SEQUENTIAL,
        steps=[
            _tool("greet", 1),
            ExecutionStep(description="shout", type=StepType.DATA_TRANSFORM, parameters={"op": "upper"}, order=2),
            ExecutionStep(
                description="check", type=StepType.DECISION, parameters={"check": "contains", "value": "HELLO"}, order=3
            ),
        ],
    )

    result = _engine(invoker).execute(plan, make_context())

    assert [step.output for step in result.step_results] == ["hello world", "HELLO WORLD", True]
    assert result.final_output is True


def test_unknown_transform_is_a_step_failure_not_a_crash(make_context) -> None:
    plan = ExecutionPlan(
        strategy=PlanStrategy.DIRECT,
        steps=[ExecutionStep(description="bad", type=StepType.DATA_TRANSFORM, parameters={"op": "rot13"}, order=1)],
    )

    result = _engine(ScriptedInvoker({})).execute(plan, make_context())

    assert result.state is ExecutionState.FAILED
    assert result.step_results[0].error_kind is ErrorKind.STEP_EXECUTION


def test_unexpected_invoker_exception_is_captured(make_context) -> None:
    class ExplodingInvoker:
        def invoke(self, tool_name, parameters, timeout):
            raise KeyError("corrupt registry")

    engine = ExecutionEngine(tool_invoker=ExplodingInvoker())
    plan = ExecutionPlan(strategy=PlanStrategy.SINGLE_TOOL, steps=[_tool("a", 1)])

    result = engine.execute(plan, make_context())

    assert result.success is False
    assert result.step_results[0].error_kind is ErrorKind.INTERNAL


def test_malformed_plan_is_fatal(make_context) -> None:
    with pytest.raises(InvariantViolation):
        _engine(ScriptedInvoker({})).execute(ExecutionPlan(strategy=PlanStrategy.DIRECT, steps=[]), make_context())
