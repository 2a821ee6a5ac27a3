from __future__ import annotations

from microagent.core.errors import InvariantViolation, PlanValidationError
from microagent.core.reasoning.schemas import Decision, DecisionType

from .schemas import ExecutionPlan, PlanStrategy, StepType

ALLOWED_STRATEGIES: dict[DecisionType, frozenset[PlanStrategy]] = {
    DecisionType.DIRECT_RESPONSE: frozenset({PlanStrategy.DIRECT}),
    DecisionType.TOOL_EXECUTION: frozenset({PlanStrategy.SINGLE_TOOL}),
    DecisionType.MULTI_STEP_PLAN: frozenset({PlanStrategy.SEQUENTIAL, PlanStrategy.PARALLEL}),
    DecisionType.CLARIFICATION_NEEDED: frozenset({PlanStrategy.DIRECT}),
}

SINGLE_STEP_STRATEGIES = frozenset({PlanStrategy.DIRECT, PlanStrategy.SINGLE_TOOL})


class PlanValidator:
    def validate(self, plan: ExecutionPlan, decision: Decision | None = None) -> ExecutionPlan:
        if not isinstance(plan.strategy, PlanStrategy):
            raise InvariantViolation(f"unknown plan strategy {plan.strategy!r}", stage="planning")
        if not plan.steps:
            raise InvariantViolation(f"plan {plan.id} has no steps", stage="planning")
        if decision is not None and plan.strategy not in ALLOWED_STRATEGIES[decision.type]:
            raise InvariantViolation(
                f"strategy {plan.strategy.value} is inconsistent with decision {decision.type.value}",
                stage="planning",
            )
        if plan.strategy in SINGLE_STEP_STRATEGIES and len(plan.steps) != 1:
            raise PlanValidationError(f"{plan.strategy.value} plans run exactly one step, got {len(plan.steps)}")
        if plan.strategy is PlanStrategy.SINGLE_TOOL and plan.steps[0].type is not StepType.TOOL_EXECUTION:
            raise PlanValidationError("SINGLE_TOOL plan must run a TOOL_EXECUTION step")

        orders = sorted(step.order for step in plan.steps)
        if orders != list(range(1, len(plan.steps) + 1)):
            raise PlanValidationError(f"step orders must be 1..{len(plan.steps)} without gaps, got {orders}")

        for step in plan.steps:
            if step.type is StepType.TOOL_EXECUTION and not step.tool_name:
                raise PlanValidationError(f"tool step {step.id} has no tool name")
            if step.type is not StepType.TOOL_EXECUTION and step.tool_name:
                raise PlanValidationError(f"{step.type.value} step {step.id} must not name a tool")
        return plan
