from __future__ import annotations

import threading
import time
from typing import Any

from microagent.core.errors import LLMUnavailable
from microagent.core.integrations.base import ToolOutcome
from microagent.core.memory.schemas import MemorySnapshot, MemoryTier, MemoryUpdate
from microagent.core.reasoning.schemas import IntentType


class FakeLLM:
    model_name = "fake-llm"

    def __init__(
        self,
        reply: str = "Here is what I found.",
        intent: IntentType = IntentType.INFORMATIONAL,
        confidence: float = 0.9,
        classify_error: Exception | None = None,
        generate_error: Exception | None = None,
    ) -> None:
        self.reply = reply
        self.intent = intent
        self.confidence = confidence
        self.classify_error = classify_error
        self.generate_error = generate_error
        self.prompts: list[str] = []
        self.contexts: list[dict[str, Any]] = []

    def classify(self, text: str, context: dict[str, Any]) -> tuple[IntentType, float]:
        self.contexts.append(dict(context))
        if self.classify_error is not None:
            raise self.classify_error
        return self.intent, self.confidence

    def generate(self, prompt: str, context: dict[str, Any]) -> str:
        self.prompts.append(prompt)
        self.contexts.append(dict(context))
        if self.generate_error is not None:
            raise self.generate_error
        return self.reply


class DownLLM(FakeLLM):
    def __init__(self) -> None:
        super().__init__(classify_error=LLMUnavailable("model offline"), generate_error=LLMUnavailable("model offline"))


class ScriptedInvoker:
    """Tool invoker whose tools are plain callables; records call order."""

    def __init__(self, tools: dict[str, Any]) -> None:
        self.tools = tools
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def invoke(self, tool_name: str, parameters: dict[str, Any], timeout: float | None) -> ToolOutcome:
        with self._lock:
            self.calls.append(tool_name)
        fn = self.tools.get(tool_name)
        if fn is None:
            return ToolOutcome(error=f"unknown_tool:{tool_name}")
        try:
            return ToolOutcome(output=fn(parameters))
        except Exception as exc:
            return ToolOutcome(error=str(exc))


def sleeper(seconds: float, output: Any = "slow"):
    def run(parameters: dict[str, Any]) -> Any:
        time.sleep(seconds)
        return output

    return run


def boom(message: str = "tool exploded"):
    def run(parameters: dict[str, Any]) -> Any:
        raise RuntimeError(message)

    return run


class CountingStore:
    """Wraps a real store and counts appends; can fail whole tiers or all writes."""

    def __init__(self, inner, failing_tiers: set[MemoryTier] | None = None, fail_appends: bool = False) -> None:
        self.inner = inner
        self.failing_tiers = failing_tiers or set()
        self.fail_appends = fail_appends
        self.appended: list[MemoryUpdate] = []
        self.consolidated: list[str] = []
        self.before_consolidate = None

    def retrieve_memory(self, conversation_id: str, filters: dict[str, Any]) -> MemorySnapshot:
        tiers = {MemoryTier(item) for item in filters.get("tiers") or list(MemoryTier)}
        if tiers & self.failing_tiers:
            raise ConnectionError("tier backend unreachable")
        return self.inner.retrieve_memory(conversation_id, filters)

    def append_memory_update(self, update: MemoryUpdate) -> None:
        if self.fail_appends:
            raise ConnectionError("store is read-only")
        self.appended.append(update)
        self.inner.append_memory_update(update)

    def consolidate(self, conversation_id: str, up_to: str | None = None) -> None:
        if self.before_consolidate is not None:
            self.before_consolidate()
        self.consolidated.append(conversation_id)
        self.inner.consolidate(conversation_id, up_to)


class SlowStore(CountingStore):
    def __init__(self, inner, slow_tiers: set[MemoryTier], delay_s: float) -> None:
        super().__init__(inner)
        self.slow_tiers = slow_tiers
        self.delay_s = delay_s

    def retrieve_memory(self, conversation_id: str, filters: dict[str, Any]) -> MemorySnapshot:
        tiers = {MemoryTier(item) for item in filters.get("tiers") or list(MemoryTier)}
        if tiers & self.slow_tiers:
            time.sleep(self.delay_s)
        return self.inner.retrieve_memory(conversation_id, filters)
