from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

from microagent.core.ledger.keys import memory_update_key

from .schemas import ANONYMOUS_USER, MemoryTier, MemoryUpdate, Message, MessageRole

if TYPE_CHECKING:
    from microagent.core.orchestration.schemas import AgentRequest, AgentResponse

_IMPORTANCE_BY_PATH = {
    "DIRECT_RESPONSE": 0.3,
    "CLARIFICATION_NEEDED": 0.2,
    "TOOL_EXECUTION": 0.6,
    "MULTI_STEP_PLAN": 0.8,
}


class WritePolicy:
    """Decides which memory updates an answered request produces."""

    _PREFERENCE_PATTERNS = (
        "from now on",
        "always",
        "never",
        "remember that",
        "my preference is",
    )

    def propose(self, request: AgentRequest, response: AgentResponse) -> list[MemoryUpdate]:
        pending: list[tuple[MemoryTier, str, Any]] = [
            (
                MemoryTier.WORKING,
                "user message",
                self._message(MessageRole.USER, request.message, request.timestamp, {"request_id": request.request_id}),
            ),
            (
                MemoryTier.WORKING,
                "assistant message",
                self._message(
                    MessageRole.ASSISTANT,
                    response.content,
                    None,
                    {"response_id": response.response_id, "confidence": response.confidence},
                ),
            ),
            (
                MemoryTier.EPISODIC,
                f"User asked: {self._shorten(request.message)}",
                {
                    "content": f"User asked: {self._shorten(request.message)}. Assistant: {self._shorten(response.content)}.",
                    "context": {
                        "request_id": request.request_id,
                        "execution_path": response.metadata.execution_path,
                        "tools": [item.tool_name for item in response.tools_executed],
                    },
                    "importance": self._importance(response),
                },
            ),
        ]

        for fact in self.preference_facts(request.message, request.user_id):
            pending.append((MemoryTier.SEMANTIC, f"preference {fact['key']}", fact))

        tools = [item.tool_name for item in response.tools_executed if item.success]
        if response.decision is not None and response.decision.type.value == "MULTI_STEP_PLAN" and len(tools) > 1:
            name = "procedure:" + "+".join(tools)
            pending.append(
                (MemoryTier.PROCEDURAL, f"tool sequence {name}", {"name": name, "value": {"tools": tools, "example": request.message}})
            )

        return [
            MemoryUpdate(
                id=memory_update_key(request.request_id, response.response_id, tier.value, index),
                conversation_id=request.conversation_id,
                user_id=request.user_id,
                tier=tier,
                summary=summary,
                value=value,
            )
            for index, (tier, summary, value) in enumerate(pending)
        ]

    def preference_facts(self, text: str, user_id: str | None = None) -> list[dict[str, Any]]:
        """Preference statements become facts owned by the user, or by the conversation for anonymous callers."""
        lowered = text.casefold()
        if not any(pattern in lowered for pattern in self._PREFERENCE_PATTERNS):
            return []
        key_slug = self._slugify(text)[:48] or "user"
        scope = "conversation" if not user_id or user_id == ANONYMOUS_USER else "user"
        return [{"key": f"preference:{key_slug}", "value": text.strip(), "scope": scope}]

    def _message(self, role: MessageRole, content: str, timestamp, metadata: dict[str, Any]) -> dict[str, Any]:
        message = Message(role=role, content=content, metadata=metadata)
        if timestamp is not None:
            message = message.model_copy(update={"timestamp": timestamp})
        return message.model_dump(mode="json")

    def _importance(self, response: AgentResponse) -> float:
        base = _IMPORTANCE_BY_PATH.get(response.metadata.execution_path or "", 0.3)
        return round(min(1.0, base * (0.5 + 0.5 * response.confidence)), 3)

    def _slugify(self, text: str) -> str:
        words = re.findall(r"[a-z0-9]+", text.casefold())
        return "-".join(words[:8])

    def _shorten(self, text: str, limit: int = 120) -> str:
        compact = " ".join(text.split())
        if len(compact) <= limit:
            return compact
        return compact[: limit - 1].rstrip() + "…"
