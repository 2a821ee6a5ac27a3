from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field

from .deadline import Deadline
from .state import ContextState

DEFAULT_PERMISSIONS = frozenset({"read", "write"})


class UserProfile(BaseModel):
    user_id: str
    user_name: str
    permissions: frozenset[str] = DEFAULT_PERMISSIONS
    preferences: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


@dataclass
class AgentContext:
    conversation_id: str
    user_id: str
    user_profile: UserProfile
    environment: ContextState = field(default_factory=lambda: ContextState("environment"))
    domain: ContextState = field(default_factory=lambda: ContextState("domain"))
    technical: ContextState = field(default_factory=lambda: ContextState("technical"))
    deadline: Deadline = field(default_factory=Deadline)

    def available_tools(self) -> list[dict[str, Any]]:
        tools = self.technical.get("tools") or []
        return [dict(tool) for tool in tools if isinstance(tool, dict) and tool.get("name")]
