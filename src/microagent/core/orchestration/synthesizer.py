from __future__ import annotations

from microagent.core.errors import ErrorKind
from microagent.core.execution.schemas import ExecutionResult, ExecutionState
from microagent.core.ledger.keys import response_key
from microagent.core.memory.schemas import MemorySnapshot
from microagent.core.observability.trace import Trace
from microagent.core.reasoning.schemas import Decision

from .schemas import AgentRequest, AgentResponse, ResponseMetadata

DEGRADED_CONTENT = "I'm sorry, I couldn't complete that request right now. Please try again in a moment."
FAILED_CONTENT = "Something went wrong on my side while handling that request, so I stopped before acting on it."


class ResponseSynthesizer:
    def __init__(self, model_label: str = "rules") -> None:
        self.model_label = model_label

    def success(
        self,
        request: AgentRequest,
        decision: Decision,
        result: ExecutionResult,
        memory: MemorySnapshot,
        trace: Trace,
    ) -> AgentResponse:
        confidence = decision.confidence
        if result.state is ExecutionState.PARTIALLY_FAILED:
            confidence *= result.succeeded_fraction

        content = str(result.final_output).strip() if result.final_output is not None else ""
        model_used = next(
            (str(step.metadata["model"]) for step in result.step_results if step.metadata.get("model")),
            self.model_label,
        )
        return AgentResponse(
            conversation_id=request.conversation_id,
            response_id=response_key(request.request_id),
            request_id=request.request_id,
            content=content or DEGRADED_CONTENT,
            confidence=round(min(1.0, max(0.0, confidence)), 4),
            reasoning=trace.to_reasoning(decision.reasoning),
            tools_executed=result.tool_executions,
            decision=decision,
            metadata=ResponseMetadata(
                tokens=result.token_usage,
                latency_ms=trace.elapsed_ms(),
                model_used=model_used,
                execution_path="DEGRADED" if decision.degraded else decision.type.value,
                error_kind=ErrorKind.COLLABORATOR_UNAVAILABLE if decision.degraded else None,
                degraded_tiers=[tier.value for tier in memory.degraded_tiers],
            ),
        )

    def degraded(
        self,
        request: AgentRequest,
        trace: Trace,
        error_kind: ErrorKind,
        *,
        decision: Decision | None = None,
        reason: str = "",
    ) -> AgentResponse:
        """Zero-confidence answer with no tools or memory updates attached."""
        fatal = error_kind is ErrorKind.INVARIANT_VIOLATION
        justification = reason or f"Stopped during {trace.stage}"
        return AgentResponse(
            conversation_id=request.conversation_id or "unknown",
            response_id=response_key(request.request_id),
            request_id=request.request_id,
            content=FAILED_CONTENT if fatal else DEGRADED_CONTENT,
            confidence=0.0,
            reasoning=trace.to_reasoning(justification),
            decision=decision,
            metadata=ResponseMetadata(
                latency_ms=trace.elapsed_ms(),
                model_used=self.model_label,
                execution_path="FAILED" if fatal else "DEGRADED",
                error_kind=error_kind,
            ),
        )
