from __future__ import annotations

import logging
from typing import Any

from microagent.core.config.settings import ReasoningSettings
from microagent.core.context.schemas import AgentContext
from microagent.core.memory.schemas import MemorySnapshot
from microagent.core.tools.registry import tool_keywords

from .classifier import tokenize
from .schemas import Decision, DecisionType, Intent

logger = logging.getLogger("microagent.reasoning")


class DecisionPolicy:
    """Maps an intent to a response strategy given the capabilities in context and memory."""

    def __init__(self, settings: ReasoningSettings | None = None) -> None:
        self.settings = settings or ReasoningSettings()

    def decide(self, intent: Intent, context: AgentContext, memory: MemorySnapshot) -> Decision:
        try:
            return self._decide(intent, context, memory)
        except Exception as exc:
            logger.warning("decision_degraded", extra={"extra_fields": {"error": str(exc)}})
            return self.degraded(f"decision rules failed ({exc})")

    def degraded(self, reason: str) -> Decision:
        return Decision(
            type=DecisionType.DIRECT_RESPONSE,
            reasoning=f"Degraded mode: {reason}; answering directly without tools.",
            confidence=0.0,
            degraded=True,
        )

    def _decide(self, intent: Intent, context: AgentContext, memory: MemorySnapshot) -> Decision:
        if intent.degraded:
            return self.degraded(f"intent classifier unavailable, used {intent.classifier}")

        if intent.confidence < self.settings.min_confidence:
            return Decision(
                type=DecisionType.CLARIFICATION_NEEDED,
                reasoning=(
                    f"Intent confidence {intent.confidence:.2f} is below the minimum "
                    f"{self.settings.min_confidence:.2f}; asking the user to clarify."
                ),
                confidence=intent.confidence,
            )

        tools = context.available_tools()
        available = {tool["name"] for tool in tools}

        template = self._matching_procedure(intent.text, memory.procedural, available)
        if template:
            return Decision(
                type=DecisionType.MULTI_STEP_PLAN,
                reasoning=f"A remembered procedure covers this request: {' -> '.join(template)}.",
                actions=template,
                confidence=intent.confidence,
            )

        matched = self._matching_tools(intent.text, tools)
        if len(matched) > 1:
            return Decision(
                type=DecisionType.MULTI_STEP_PLAN,
                reasoning=f"{intent.type.value} request needs several tools: {', '.join(matched)}.",
                actions=matched,
                confidence=intent.confidence,
            )
        if matched:
            return Decision(
                type=DecisionType.TOOL_EXECUTION,
                reasoning=f"{intent.type.value} request matches the {matched[0]} capability.",
                actions=matched,
                confidence=intent.confidence,
            )

        return Decision(
            type=DecisionType.DIRECT_RESPONSE,
            reasoning=f"{intent.type.value} request with no matching tool; responding directly.",
            confidence=intent.confidence,
        )

    def _matching_tools(self, text: str, tools: list[dict[str, Any]]) -> list[str]:
        tokens = tokenize(text)
        positions: list[tuple[int, str]] = []
        for tool in tools:
            keywords = tool_keywords(tool["name"], tool.get("capabilities") or [])
            hits = [index for index, token in enumerate(tokens) if token in keywords]
            if hits:
                positions.append((hits[0], tool["name"]))
        return [name for _, name in sorted(positions)]

    def _matching_procedure(self, text: str, procedural: dict[str, Any], available: set[str]) -> list[str]:
        words = set(tokenize(text))
        if not words:
            return []
        for template in procedural.values():
            if not isinstance(template, dict):
                continue
            tools = [str(item) for item in template.get("tools") or []]
            example = set(tokenize(str(template.get("example") or "")))
            if len(tools) < 2 or not example or not set(tools) <= available:
                continue
            overlap = len(words & example) / len(words | example)
            if overlap >= 0.6:
                return tools
        return []
