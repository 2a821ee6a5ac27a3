from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from microagent.core.errors import ErrorKind


class ExecutionState(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    PARTIALLY_FAILED = "PARTIALLY_FAILED"
    FAILED = "FAILED"


class TokenUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )


class StepResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    step_id: str
    order: int = 1
    success: bool
    output: Any = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    duration_ms: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)


class ToolExecution(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    step_id: str
    tool_name: str
    parameters: dict[str, Any] = Field(default_factory=dict)
    success: bool
    output: Any = None
    error: str | None = None
    started_at: datetime
    finished_at: datetime

    @property
    def duration_ms(self) -> int:
        return int((self.finished_at - self.started_at).total_seconds() * 1000)


class ExecutionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    plan_id: str
    state: ExecutionState
    success: bool
    step_results: list[StepResult] = Field(default_factory=list)
    final_output: Any = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    tool_executions: list[ToolExecution] = Field(default_factory=list)
    token_usage: TokenUsage = Field(default_factory=TokenUsage)

    @property
    def succeeded_fraction(self) -> float:
        if not self.step_results:
            return 0.0
        return sum(1 for result in self.step_results if result.success) / len(self.step_results)
