from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

ANONYMOUS_USER = "anonymous"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MemoryTier(str, Enum):
    WORKING = "WORKING"
    EPISODIC = "EPISODIC"
    SEMANTIC = "SEMANTIC"
    PROCEDURAL = "PROCEDURAL"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    role: MessageRole
    content: str
    timestamp: datetime = Field(default_factory=_utc_now)
    metadata: dict[str, Any] = Field(default_factory=dict)


class Episode(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    conversation_id: str | None = None
    user_id: str | None = None
    embedding: list[float] = Field(default_factory=list)
    content: str
    context: dict[str, Any] = Field(default_factory=dict)
    importance: float = Field(0.5, ge=0.0, le=1.0)
    timestamp: datetime = Field(default_factory=_utc_now)
    score: float | None = None


class MemorySnapshot(BaseModel):
    """Read-only view of the four tiers for one conversation."""

    model_config = ConfigDict(frozen=True)

    conversation_id: str
    working: list[Message] = Field(default_factory=list)
    episodic: list[Episode] = Field(default_factory=list)
    semantic: dict[str, Any] = Field(default_factory=dict)
    procedural: dict[str, Any] = Field(default_factory=dict)
    degraded_tiers: list[MemoryTier] = Field(default_factory=list)

    @classmethod
    def empty(cls, conversation_id: str) -> MemorySnapshot:
        return cls(conversation_id=conversation_id)


class MemoryUpdate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    conversation_id: str
    user_id: str | None = None
    tier: MemoryTier
    summary: str
    value: Any = None
    created_at: datetime = Field(default_factory=_utc_now)
