from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from microagent.core.context.schemas import UserProfile
    from microagent.core.memory.schemas import MemorySnapshot, MemoryUpdate
    from microagent.core.reasoning.schemas import IntentType


class ProfileProvider(Protocol):
    def get_profile(self, user_id: str) -> UserProfile | None: ...


class MemoryStore(Protocol):
    def retrieve_memory(self, conversation_id: str, filters: dict[str, Any]) -> MemorySnapshot: ...

    def append_memory_update(self, update: MemoryUpdate) -> None: ...

    def consolidate(self, conversation_id: str, up_to: str | None = None) -> None:
        """Compact working memory; ``up_to`` names the newest message already summarised."""
        ...


class LanguageModel(Protocol):
    """``context`` may carry ``timeout_s``, the budget left on the caller's deadline."""

    model_name: str

    def classify(self, text: str, context: dict[str, Any]) -> tuple[IntentType, float]: ...

    def generate(self, prompt: str, context: dict[str, Any]) -> str: ...


@dataclass(frozen=True)
class ToolOutcome:
    output: Any = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ToolInvoker(Protocol):
    def invoke(self, tool_name: str, parameters: dict[str, Any], timeout: float | None) -> ToolOutcome: ...
