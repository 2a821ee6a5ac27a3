from __future__ import annotations

import logging
from pathlib import Path

from microagent.core.config.loader import default_state_dir
from microagent.core.config.settings import AgentSettings
from microagent.core.context.builder import ContextBuilder
from microagent.core.context.deadline import Deadline
from microagent.core.context.schemas import AgentContext
from microagent.core.errors import (
    AgentError,
    DeadlineExceeded,
    ErrorKind,
    InvariantViolation,
    RequestValidationError,
    error_kind_of,
)
from microagent.core.execution.engine import ExecutionEngine
from microagent.core.execution.schemas import ExecutionState
from microagent.core.infra.breaker_manager import BreakerManager
from microagent.core.integrations.base import LanguageModel, MemoryStore, ProfileProvider, ToolInvoker
from microagent.core.ledger.ledger import WriteLedger
from microagent.core.logging.context import log_context
from microagent.core.memory.embeddings import HashingEmbedder
from microagent.core.memory.manager import MemoryManager
from microagent.core.memory.schemas import MemorySnapshot, MemoryUpdate
from microagent.core.memory.store import JsonlMemoryStore
from microagent.core.observability.trace import Trace
from microagent.core.planning.engine import PlanningEngine
from microagent.core.reasoning.engine import ReasoningEngine, build_reasoning_engine
from microagent.core.summarize.summarizer import Summarizer
from microagent.core.tools.invoker import RegistryToolInvoker
from microagent.core.tools.registry import ToolRegistry

from .schemas import AgentRequest, AgentResponse
from .synthesizer import ResponseSynthesizer

logger = logging.getLogger("microagent.orchestration")


def render_memory(memory: MemorySnapshot, max_items: int = 5) -> str:
    lines = [f"{message.role.value}: {message.content}" for message in memory.working[-max_items:]]
    lines.extend(f"episode: {episode.content}" for episode in memory.episodic[:max_items])
    lines.extend(f"fact {key}: {value}" for key, value in list(memory.semantic.items())[:max_items])
    return "\n".join(lines)


class AgentBrain:
    """Single entry point: ``process(request)`` always returns an ``AgentResponse``.

    Stages run in a fixed order (validate, context, memory, analyze, decide,
    plan, execute, respond, store). Any stage error becomes a zero-confidence
    degraded response; only the final memory store may fail silently.
    """

    def __init__(
        self,
        settings: AgentSettings | None = None,
        *,
        memory_store: MemoryStore | None = None,
        llm: LanguageModel | None = None,
        tool_registry: ToolRegistry | None = None,
        tool_invoker: ToolInvoker | None = None,
        profile_provider: ProfileProvider | None = None,
        breaker_manager: BreakerManager | None = None,
        memory_manager: MemoryManager | None = None,
        reasoning_engine: ReasoningEngine | None = None,
        planning_engine: PlanningEngine | None = None,
        execution_engine: ExecutionEngine | None = None,
    ) -> None:
        self.settings = settings or AgentSettings()
        self.breaker_manager = breaker_manager or BreakerManager(self.settings.breakers)
        self.tool_registry = tool_registry or ToolRegistry()
        self.context_builder = ContextBuilder(profile_provider=profile_provider, tool_registry=self.tool_registry)

        if memory_manager is None:
            state_dir = default_state_dir(self.settings)
            store = memory_store or JsonlMemoryStore(
                Path(state_dir) / "memory",
                embedder=HashingEmbedder(self.settings.memory.embedding_dim),
                keep_working=self.settings.memory.keep_working_after_consolidation,
            )
            memory_manager = MemoryManager(
                store,
                self.settings.memory,
                ledger=WriteLedger(state_dir=Path(state_dir) / "ledger"),
                summarizer=Summarizer(llm),
            )
        self.memory_manager = memory_manager
        self.reasoning_engine = reasoning_engine or build_reasoning_engine(self.settings.reasoning, llm)
        self.planning_engine = planning_engine or PlanningEngine(self.settings.planning)
        self.execution_engine = execution_engine or ExecutionEngine(
            self.settings.execution,
            llm=llm,
            tool_invoker=tool_invoker or RegistryToolInvoker(self.tool_registry, self.settings.execution.max_workers),
            breaker_manager=self.breaker_manager,
        )
        self.synthesizer = ResponseSynthesizer(
            getattr(llm, "model_name", None) or self.settings.orchestrator.model_label
        )

    def process(self, request: AgentRequest) -> AgentResponse:
        trace = Trace(request_id=request.request_id, correlation_id=request.request_id)
        with log_context(
            correlation_id=request.request_id,
            conversation_id=request.conversation_id or None,
            request_id=request.request_id,
        ):
            trace.emit("TaskStarted", {"input": request.message})
            try:
                response = self._run(request, trace)
            except InvariantViolation as exc:
                logger.error(
                    "pipeline_failed",
                    exc_info=True,
                    extra={"extra_fields": {"stage": trace.stage, "events": trace.events}},
                )
                trace.emit("PipelineFailed", {"output": str(exc)})
                return self.synthesizer.degraded(request, trace, ErrorKind.INVARIANT_VIOLATION, reason=str(exc))
            except Exception as exc:
                kind = error_kind_of(exc)
                logger.warning(
                    "pipeline_degraded",
                    exc_info=not isinstance(exc, AgentError),
                    extra={"extra_fields": {"stage": trace.stage, "error_kind": kind.value, "error": str(exc)}},
                )
                trace.emit("PipelineDegraded", {"output": str(exc)})
                return self.synthesizer.degraded(request, trace, kind, reason=str(exc))

            logger.info(
                "request_completed",
                extra={
                    "extra_fields": {
                        "execution_path": response.metadata.execution_path,
                        "confidence": response.confidence,
                        "latency_ms": response.metadata.latency_ms,
                        "memory_updates": len(response.memory_updates),
                    }
                },
            )
            return response

    def shutdown(self) -> None:
        self.execution_engine.shutdown()
        self.memory_manager.shutdown()
        invoker = self.execution_engine.tool_invoker
        if isinstance(invoker, RegistryToolInvoker):
            invoker.shutdown()

    def _run(self, request: AgentRequest, trace: Trace) -> AgentResponse:
        trace.enter("validate")
        self._validate(request)

        trace.enter("context")
        deadline = Deadline(self.settings.orchestrator.request_timeout_s)
        context = self.context_builder.build_context(request, deadline)
        trace.emit("ContextBuilt", {"output": f"{len(context.available_tools())} tools available"})

        trace.enter("memory")
        self._checkpoint(context)
        memory = self.memory_manager.retrieve(request.conversation_id, context)
        context.technical.set("memory_block", render_memory(memory))
        trace.emit(
            "MemoryRetrieved",
            {
                "output": f"{len(memory.working)} working, {len(memory.episodic)} episodic",
                "degraded_tiers": [tier.value for tier in memory.degraded_tiers],
            },
        )

        trace.enter("analyze")
        self._checkpoint(context)
        intent = self.reasoning_engine.analyze(request, context, memory)
        trace.emit(
            "IntentClassified",
            {"input": request.message, "output": intent.type.value, "confidence": intent.confidence},
        )

        trace.enter("decide")
        decision = self.reasoning_engine.decide(intent, context, memory)
        trace.emit(
            "DecisionMade",
            {"output": decision.type.value, "confidence": decision.confidence, "actions": decision.actions},
        )

        trace.enter("plan")
        self._checkpoint(context)
        plan = self.planning_engine.plan(intent, decision, context)
        trace.emit("PlanCreated", {"output": f"{plan.strategy.value} with {len(plan.steps)} steps"})

        trace.enter("execute")
        result = self.execution_engine.execute(plan, context)
        trace.emit(
            "ExecutionFinished",
            {"output": result.state.value, "succeeded_fraction": result.succeeded_fraction},
        )
        if result.state is ExecutionState.FAILED:
            return self.synthesizer.degraded(
                request,
                trace,
                result.error_kind or ErrorKind.STEP_EXECUTION,
                decision=decision,
                reason=result.error or "every step failed",
            )

        trace.enter("respond")
        response = self.synthesizer.success(request, decision, result, memory, trace)

        trace.enter("store")
        committed = self._store(request, response, context)
        if self.memory_manager.needs_consolidation(memory):
            self._consolidate(request.conversation_id, request.user_id)
        return response.model_copy(update={"memory_updates": committed})

    def _store(self, request: AgentRequest, response: AgentResponse, context: AgentContext) -> list[MemoryUpdate]:
        try:
            return self.memory_manager.store(request, response, context)
        except Exception as exc:
            logger.warning(
                "memory_store_failed",
                extra={"extra_fields": {"response_id": response.response_id, "error": str(exc)}},
            )
            return []

    def _consolidate(self, conversation_id: str, user_id: str) -> None:
        try:
            self.memory_manager.consolidate_async(conversation_id, user_id)
        except Exception as exc:
            logger.warning(
                "consolidation_schedule_failed",
                extra={"extra_fields": {"error": str(exc)}},
            )

    @staticmethod
    def _validate(request: AgentRequest) -> None:
        if not request.conversation_id or not request.conversation_id.strip():
            raise RequestValidationError("conversation_id must not be empty", stage="validate")
        if not request.message or not request.message.strip():
            raise RequestValidationError("message must not be empty", stage="validate")

    @staticmethod
    def _checkpoint(context: AgentContext) -> None:
        if context.deadline.expired:
            raise DeadlineExceeded("request deadline reached", stage="orchestration")
