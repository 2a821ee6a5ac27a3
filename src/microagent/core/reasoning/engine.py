from __future__ import annotations

import logging
from typing import Protocol

from microagent.core.config.settings import ReasoningSettings
from microagent.core.context.schemas import AgentContext
from microagent.core.errors import InvariantViolation
from microagent.core.integrations.base import LanguageModel
from microagent.core.memory.schemas import MemorySnapshot
from microagent.core.orchestration.schemas import AgentRequest

from .classifier import KeywordClassifier, extract_entities
from .policy import DecisionPolicy
from .schemas import Decision, Intent

logger = logging.getLogger("microagent.reasoning")


class ReasoningEngine(Protocol):
    def analyze(self, request: AgentRequest, context: AgentContext, memory: MemorySnapshot) -> Intent: ...

    def decide(self, intent: Intent, context: AgentContext, memory: MemorySnapshot) -> Decision: ...


def _domain(context: AgentContext) -> str:
    return str(context.domain.get("label") or "general")


def _tool_names(context: AgentContext) -> list[str]:
    return [tool["name"] for tool in context.available_tools()]


class RuleBasedReasoningEngine:
    def __init__(
        self,
        settings: ReasoningSettings | None = None,
        classifier: KeywordClassifier | None = None,
        policy: DecisionPolicy | None = None,
    ) -> None:
        self.settings = settings or ReasoningSettings()
        self.classifier = classifier or KeywordClassifier(self.settings.classifier_version)
        self.policy = policy or DecisionPolicy(self.settings)

    def analyze(self, request: AgentRequest, context: AgentContext, memory: MemorySnapshot) -> Intent:
        intent_type, confidence = self.classifier.classify(request.message)
        return Intent(
            type=intent_type,
            domain=_domain(context),
            confidence=confidence,
            entities=extract_entities(request.message, _tool_names(context)),
            classifier=self.classifier.version,
            text=request.message,
        )

    def decide(self, intent: Intent, context: AgentContext, memory: MemorySnapshot) -> Decision:
        return self.policy.decide(intent, context, memory)


class ModelReasoningEngine:
    """Classifies with the language model; drops to keyword rules at capped confidence when it is unavailable."""

    def __init__(
        self,
        llm: LanguageModel,
        settings: ReasoningSettings | None = None,
        fallback: KeywordClassifier | None = None,
        policy: DecisionPolicy | None = None,
    ) -> None:
        self.llm = llm
        self.settings = settings or ReasoningSettings()
        self.fallback = fallback or KeywordClassifier(self.settings.classifier_version)
        self.policy = policy or DecisionPolicy(self.settings)

    def analyze(self, request: AgentRequest, context: AgentContext, memory: MemorySnapshot) -> Intent:
        entities = extract_entities(request.message, _tool_names(context))
        try:
            intent_type, confidence = self.llm.classify(
                request.message,
                {
                    "domain": _domain(context),
                    "recent": [message.content for message in memory.working[-3:]],
                    "timeout_s": context.deadline.remaining(),
                },
            )
        except Exception as exc:
            logger.warning(
                "classifier_degraded",
                extra={"extra_fields": {"error": str(exc), "fallback": self.fallback.version}},
            )
            intent_type, confidence = self.fallback.classify(request.message)
            return Intent(
                type=intent_type,
                domain=_domain(context),
                confidence=min(confidence, self.settings.degraded_confidence),
                entities=entities,
                classifier=f"{self.fallback.version}-fallback",
                degraded=True,
                text=request.message,
            )
        return Intent(
            type=intent_type,
            domain=_domain(context),
            confidence=confidence,
            entities=entities,
            classifier=f"model:{getattr(self.llm, 'model_name', 'unknown')}",
            text=request.message,
        )

    def decide(self, intent: Intent, context: AgentContext, memory: MemorySnapshot) -> Decision:
        return self.policy.decide(intent, context, memory)


def build_reasoning_engine(settings: ReasoningSettings, llm: LanguageModel | None) -> ReasoningEngine:
    if settings.engine == "rules":
        return RuleBasedReasoningEngine(settings)
    if settings.engine == "model":
        if llm is None:
            raise InvariantViolation("reasoning engine 'model' configured without a language model")
        return ModelReasoningEngine(llm, settings)
    raise InvariantViolation(f"unknown reasoning engine {settings.engine!r}")
