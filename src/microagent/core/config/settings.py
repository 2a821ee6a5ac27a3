from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class ReasoningSettings(BaseModel):
    engine: Literal["rules", "model"] = "rules"
    classifier_version: str = "keywords-v1"
    min_confidence: float = Field(0.5, ge=0.0, le=1.0)
    degraded_confidence: float = Field(0.5, ge=0.0, le=0.5)


class PlanningSettings(BaseModel):
    parallel_enabled: bool = True


class ExecutionSettings(BaseModel):
    max_workers: int = Field(4, ge=1)
    tool_timeout_s: float = Field(10.0, gt=0)
    plan_timeout_s: float = Field(30.0, gt=0)
    merge_policy: Literal["concat", "ranked", "first"] = "concat"


class MemorySettings(BaseModel):
    state_dir: str | None = None
    working_limit: int = Field(20, ge=1)
    episodic_limit: int = Field(5, ge=0)
    semantic_limit: int = Field(20, ge=0)
    procedural_limit: int = Field(10, ge=0)
    retrieval_timeout_s: float = Field(2.0, gt=0)
    keep_working_after_consolidation: int = Field(10, ge=0)
    embedding_dim: int = Field(64, ge=8)


class LLMSettings(BaseModel):
    provider: Literal["off", "http", "vllm"] = "off"
    url: str = "http://127.0.0.1:8001/v1/chat/completions"
    model: str = "local-chat"
    timeout_s: float = 45.0
    temperature: float = 0.2
    max_tokens_json: int = 400
    max_tokens_text: int = 800


class BreakerSettings(BaseModel):
    enabled: bool = True
    failure_threshold: int = Field(3, ge=1)
    open_seconds: int = Field(60, ge=1)
    half_open_max_trials: int = Field(1, ge=1)


class OrchestratorSettings(BaseModel):
    request_timeout_s: float = Field(60.0, gt=0)
    model_label: str = "rules"


class LoggingSettings(BaseModel):
    level: str = "INFO"
    to_file: bool = False
    log_dir: str | None = None
    max_bytes: int = 5_000_000
    backup_count: int = 5


class AgentSettings(BaseModel):
    reasoning: ReasoningSettings = Field(default_factory=ReasoningSettings)
    planning: PlanningSettings = Field(default_factory=PlanningSettings)
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings)
    memory: MemorySettings = Field(default_factory=MemorySettings)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    breakers: BreakerSettings = Field(default_factory=BreakerSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
