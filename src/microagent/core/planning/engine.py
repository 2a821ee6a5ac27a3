from __future__ import annotations

import logging
import math
from typing import Any

from microagent.core.config.settings import PlanningSettings
from microagent.core.context.schemas import AgentContext
from microagent.core.errors import PlanValidationError
from microagent.core.reasoning.schemas import Decision, DecisionType, Intent

from .schemas import ExecutionPlan, ExecutionStep, PlanStrategy, StepType
from .validator import PlanValidator

logger = logging.getLogger("microagent.planning")

STEP_WEIGHTS: dict[StepType, float] = {
    StepType.TOOL_EXECUTION: 1.0,
    StepType.LLM_CALL: 1.0,
    StepType.DECISION: 0.6,
    StepType.DATA_TRANSFORM: 0.4,
}

_STRATEGY_BY_DECISION: dict[DecisionType, PlanStrategy] = {
    DecisionType.DIRECT_RESPONSE: PlanStrategy.DIRECT,
    DecisionType.TOOL_EXECUTION: PlanStrategy.SINGLE_TOOL,
    DecisionType.MULTI_STEP_PLAN: PlanStrategy.SEQUENTIAL,
    DecisionType.CLARIFICATION_NEEDED: PlanStrategy.DIRECT,
}

CLARIFICATION_FALLBACK = "Could you tell me a little more about what you need so I can help?"


def strategy_for(decision_type: DecisionType, independent: bool = False) -> PlanStrategy:
    strategy = _STRATEGY_BY_DECISION[decision_type]
    if strategy is PlanStrategy.SEQUENTIAL and independent:
        return PlanStrategy.PARALLEL
    return strategy


def estimate_complexity(steps: list[ExecutionStep]) -> float:
    """Grows with step count and weight mix, saturating below 1.0."""
    total = sum(STEP_WEIGHTS[step.type] for step in steps)
    return round(1.0 - math.exp(-total / 3.0), 4)


class PlanningEngine:
    def __init__(self, settings: PlanningSettings | None = None, validator: PlanValidator | None = None) -> None:
        self.settings = settings or PlanningSettings()
        self.validator = validator or PlanValidator()

    def plan(self, intent: Intent, decision: Decision, context: AgentContext) -> ExecutionPlan:
        if decision.type is DecisionType.DIRECT_RESPONSE:
            strategy, steps = PlanStrategy.DIRECT, [self._respond_step(intent, decision)]
        elif decision.type is DecisionType.CLARIFICATION_NEEDED:
            strategy, steps = PlanStrategy.DIRECT, [self._clarify_step(intent)]
        elif decision.type is DecisionType.TOOL_EXECUTION:
            if not decision.actions:
                raise PlanValidationError("TOOL_EXECUTION decision carries no action to run", stage="planning")
            strategy, steps = PlanStrategy.SINGLE_TOOL, [self._tool_step(intent, decision.actions[0], order=1, critical=True)]
        else:
            strategy, steps = self._decompose(intent, decision, context)

        plan = ExecutionPlan(
            strategy=strategy,
            steps=steps,
            estimated_complexity=estimate_complexity(steps),
            decision_id=decision.id,
        )
        self.validator.validate(plan, decision)
        logger.info(
            "plan_created",
            extra={
                "extra_fields": {
                    "plan_id": plan.id,
                    "strategy": plan.strategy.value,
                    "step_count": len(plan.steps),
                    "estimated_complexity": plan.estimated_complexity,
                }
            },
        )
        return plan

    def _decompose(self, intent: Intent, decision: Decision, context: AgentContext) -> tuple[PlanStrategy, list[ExecutionStep]]:
        actions = [action for action in decision.actions if action]
        if not actions:
            raise PlanValidationError("MULTI_STEP_PLAN decision carries no actions to decompose", stage="planning")

        descriptors = {tool["name"]: tool for tool in context.available_tools()}
        independent = self.settings.parallel_enabled and self._independent(actions, descriptors)
        strategy = strategy_for(decision.type, independent)

        steps: list[ExecutionStep] = []
        for index, action in enumerate(actions, start=1):
            read_only = descriptors.get(action, {}).get("side_effect") == "read"
            # a failed read does not invalidate later steps; a failed write does
            steps.append(self._tool_step(intent, action, order=index, critical=not read_only))
        if strategy is PlanStrategy.SEQUENTIAL:
            steps.append(
                ExecutionStep(
                    description="Summarize the tool results for the user",
                    type=StepType.LLM_CALL,
                    parameters={"prompt_kind": "synthesize", "message": intent.text},
                    order=len(steps) + 1,
                )
            )
        return strategy, steps

    @staticmethod
    def _independent(actions: list[str], descriptors: dict[str, dict[str, Any]]) -> bool:
        if len(actions) < 2 or len(set(actions)) != len(actions):
            return False
        return all(descriptors.get(action, {}).get("side_effect") == "read" for action in actions)

    @staticmethod
    def _respond_step(intent: Intent, decision: Decision) -> ExecutionStep:
        return ExecutionStep(
            description="Generate response based on intent",
            type=StepType.LLM_CALL,
            parameters={
                "prompt_kind": "respond",
                "message": intent.text,
                "intent": intent.type.value,
                "fallback": f"{intent.type.value.capitalize()} request received: {intent.text}",
                "degraded": decision.degraded,
            },
            order=1,
        )

    @staticmethod
    def _clarify_step(intent: Intent) -> ExecutionStep:
        return ExecutionStep(
            description="Ask the user to clarify the request",
            type=StepType.LLM_CALL,
            parameters={"prompt_kind": "clarify", "message": intent.text, "fallback": CLARIFICATION_FALLBACK},
            order=1,
        )

    @staticmethod
    def _tool_step(intent: Intent, tool_name: str, *, order: int, critical: bool) -> ExecutionStep:
        return ExecutionStep(
            description=f"Run {tool_name}",
            type=StepType.TOOL_EXECUTION,
            tool_name=tool_name,
            parameters={
                "message": intent.text,
                "entities": {entity.type: entity.value for entity in intent.entities if entity.type != "tool"},
            },
            order=order,
            critical=critical,
        )
