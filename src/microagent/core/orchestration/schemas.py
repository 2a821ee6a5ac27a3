from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from microagent.core.errors import ErrorKind
from microagent.core.execution.schemas import TokenUsage, ToolExecution
from microagent.core.memory.schemas import ANONYMOUS_USER, MemoryUpdate
from microagent.core.reasoning.schemas import Decision


class Attachment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    filename: str
    content_type: str = "application/octet-stream"
    content: bytes = b""
    size: int = 0


class AgentRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    request_id: str = Field(default_factory=lambda: str(uuid4()))
    conversation_id: str
    user_id: str = ANONYMOUS_USER
    session_id: str | None = None
    message: str
    context: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    attachments: list[Attachment] = Field(default_factory=list)


class ReasoningStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    description: str
    input: str | None = None
    output: str | None = None
    confidence: float | None = None


class ReasoningTrace(BaseModel):
    model_config = ConfigDict(frozen=True)

    steps: list[ReasoningStep] = Field(default_factory=list)
    justification: str = ""


class ResponseMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    tokens: TokenUsage = Field(default_factory=TokenUsage)
    latency_ms: int = 0
    model_used: str | None = None
    execution_path: str | None = None
    error_kind: ErrorKind | None = None
    degraded_tiers: list[str] = Field(default_factory=list)


class AgentResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    conversation_id: str
    response_id: str = Field(default_factory=lambda: str(uuid4()))
    request_id: str | None = None
    content: str
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: ReasoningTrace = Field(default_factory=ReasoningTrace)
    tools_executed: list[ToolExecution] = Field(default_factory=list)
    memory_updates: list[MemoryUpdate] = Field(default_factory=list)
    decision: Decision | None = None
    metadata: ResponseMetadata = Field(default_factory=ResponseMetadata)
