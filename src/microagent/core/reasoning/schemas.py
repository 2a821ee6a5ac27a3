from __future__ import annotations

from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


class IntentType(str, Enum):
    INFORMATIONAL = "INFORMATIONAL"
    TRANSACTIONAL = "TRANSACTIONAL"
    CONVERSATIONAL = "CONVERSATIONAL"
    ANALYTICAL = "ANALYTICAL"


class DecisionType(str, Enum):
    DIRECT_RESPONSE = "DIRECT_RESPONSE"
    TOOL_EXECUTION = "TOOL_EXECUTION"
    MULTI_STEP_PLAN = "MULTI_STEP_PLAN"
    CLARIFICATION_NEEDED = "CLARIFICATION_NEEDED"


class Entity(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    type: str
    value: str
    confidence: float = Field(1.0, ge=0.0, le=1.0)


class Intent(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    type: IntentType
    domain: str = "general"
    confidence: float = Field(ge=0.0, le=1.0)
    entities: list[Entity] = Field(default_factory=list)
    classifier: str = "rules"
    degraded: bool = False
    text: str = ""


class Decision(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    type: DecisionType
    reasoning: str
    actions: list[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    degraded: bool = False
