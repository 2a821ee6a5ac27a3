from __future__ import annotations

from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class PlanStrategy(str, Enum):
    DIRECT = "DIRECT"
    SINGLE_TOOL = "SINGLE_TOOL"
    SEQUENTIAL = "SEQUENTIAL"
    PARALLEL = "PARALLEL"


class StepType(str, Enum):
    LLM_CALL = "LLM_CALL"
    TOOL_EXECUTION = "TOOL_EXECUTION"
    DATA_TRANSFORM = "DATA_TRANSFORM"
    DECISION = "DECISION"


class ExecutionStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    description: str
    type: StepType
    tool_name: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    order: int = Field(1, ge=1)
    critical: bool = True
    timeout_s: float | None = Field(None, gt=0)


class ExecutionPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    strategy: PlanStrategy
    steps: list[ExecutionStep] = Field(default_factory=list)
    estimated_complexity: float = 0.0
    decision_id: str | None = None

    def ordered_steps(self) -> list[ExecutionStep]:
        return sorted(self.steps, key=lambda step: step.order)
