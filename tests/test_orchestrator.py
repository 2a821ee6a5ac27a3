from __future__ import annotations

import logging
import time

import pytest

from microagent.core.config.settings import AgentSettings, MemorySettings, ReasoningSettings
from microagent.core.errors import ErrorKind, InvariantViolation
from microagent.core.memory.schemas import MemoryTier
from microagent.core.memory.store import JsonlMemoryStore
from microagent.core.orchestration.orchestrator import AgentBrain
from microagent.core.orchestration.schemas import AgentRequest
from microagent.core.planning.engine import PlanningEngine
from microagent.core.reasoning.schemas import DecisionType
from microagent.core.tools.base import FunctionTool
from microagent.core.tools.registry import ToolRegistry

from fakes import CountingStore, DownLLM, FakeLLM


@pytest.fixture
def make_brain():
    brains: list[AgentBrain] = []

    def build(settings: AgentSettings, **kwargs) -> AgentBrain:
        brain = AgentBrain(settings, **kwargs)
        brains.append(brain)
        return brain

    yield build
    for brain in brains:
        brain.shutdown()


def _events(response) -> dict[str, str | None]:
    return {step.description: step.output for step in response.reasoning.steps}


def test_balance_question_is_answered_directly(settings, make_brain) -> None:
    brain = make_brain(settings)

    response = brain.process(AgentRequest(conversation_id="c1", message="what is my balance?"))

    assert response.decision.type is DecisionType.DIRECT_RESPONSE
    assert _events(response)["IntentClassified"] == "INFORMATIONAL"
    assert _events(response)["PlanCreated"] == "DIRECT with 1 steps"
    assert _events(response)["ExecutionFinished"] == "SUCCEEDED"
    assert response.confidence == pytest.approx(0.9)
    assert response.content
    assert response.metadata.execution_path == "DIRECT_RESPONSE"
    assert response.metadata.latency_ms >= 0
    assert [update.tier for update in response.memory_updates] == [
        MemoryTier.WORKING,
        MemoryTier.WORKING,
        MemoryTier.EPISODIC,
    ]


def test_ticket_request_runs_the_ticket_tool(settings, make_brain) -> None:
    registry = ToolRegistry()
    registry.register(FunctionTool(name="ticket-tool", fn=lambda params: "Ticket T-1 created", side_effect="write"))
    brain = make_brain(settings, tool_registry=registry)

    response = brain.process(AgentRequest(conversation_id="c1", message="create a new ticket"))

    assert response.decision.type is DecisionType.TOOL_EXECUTION
    assert _events(response)["PlanCreated"] == "SINGLE_TOOL with 1 steps"
    assert [item.tool_name for item in response.tools_executed] == ["ticket-tool"]
    assert response.content == "Ticket T-1 created"


def test_model_reply_and_usage_are_reported(settings, make_brain) -> None:
    brain = make_brain(settings, llm=FakeLLM(reply="You have 42 euros."))

    response = brain.process(AgentRequest(conversation_id="c1", message="what is my balance?"))

    assert response.content == "You have 42 euros."
    assert response.metadata.model_used == "fake-llm"
    assert response.metadata.tokens.total_tokens > 0


@pytest.mark.parametrize("llm", [DownLLM(), FakeLLM(classify_error=RuntimeError("classifier crashed"))])
def test_classifier_failure_yields_zero_confidence_response(tmp_path, make_brain, llm) -> None:
    settings = AgentSettings(memory=MemorySettings(state_dir=str(tmp_path)), reasoning=ReasoningSettings(engine="model"))
    brain = make_brain(settings, llm=llm)

    response = brain.process(AgentRequest(conversation_id="c1", message="what is my balance?"))

    assert response.confidence == 0.0
    assert response.content.strip()
    assert response.decision.degraded is True
    assert response.metadata.execution_path == "DEGRADED"


def test_stage_error_becomes_degraded_response(settings, make_brain) -> None:
    class BrokenReasoning:
        def analyze(self, request, context, memory):
            raise RuntimeError("reasoning exploded")

        def decide(self, intent, context, memory):
            raise AssertionError("not reached")

    brain = make_brain(settings, reasoning_engine=BrokenReasoning())

    response = brain.process(AgentRequest(conversation_id="c1", message="what is my balance?"))

    assert response.confidence == 0.0
    assert response.content
    assert response.tools_executed == []
    assert response.memory_updates == []
    assert response.metadata.execution_path == "DEGRADED"
    assert response.metadata.error_kind is ErrorKind.INTERNAL


def test_invariant_violation_is_logged_and_marked_failed(settings, make_brain, caplog, monkeypatch) -> None:
    class BrokenPlanner(PlanningEngine):
        def plan(self, intent, decision, context):
            raise InvariantViolation("plan has no steps", stage="planning")

    monkeypatch.setattr(logging.getLogger("microagent"), "propagate", True)
    brain = make_brain(settings, planning_engine=BrokenPlanner())

    with caplog.at_level(logging.ERROR, logger="microagent"):
        response = brain.process(AgentRequest(conversation_id="c1", message="what is my balance?"))

    assert response.confidence == 0.0
    assert response.metadata.execution_path == "FAILED"
    assert response.metadata.error_kind is ErrorKind.INVARIANT_VIOLATION
    assert any(record.getMessage() == "pipeline_failed" and record.exc_info for record in caplog.records)


def test_empty_message_is_a_validation_error(settings, make_brain) -> None:
    response = make_brain(settings).process(AgentRequest(conversation_id="c1", message="   "))

    assert response.confidence == 0.0
    assert response.metadata.error_kind is ErrorKind.VALIDATION


def test_failed_tool_execution_returns_degraded_response(settings, make_brain) -> None:
    def broken(params):
        raise RuntimeError("ticket backend down")

    registry = ToolRegistry()
    registry.register(FunctionTool(name="ticket-tool", fn=broken, side_effect="write"))

    response = make_brain(settings, tool_registry=registry).process(
        AgentRequest(conversation_id="c1", message="create a new ticket")
    )

    assert response.confidence == 0.0
    assert response.tools_executed == []
    assert response.metadata.error_kind is ErrorKind.STEP_EXECUTION


def test_store_failure_does_not_spoil_the_response(settings, tmp_path, make_brain) -> None:
    store = CountingStore(JsonlMemoryStore(tmp_path / "memory"), fail_appends=True)
    brain = make_brain(settings, memory_store=store)

    response = brain.process(AgentRequest(conversation_id="c1", message="what is my balance?"))

    assert response.confidence == pytest.approx(0.9)
    assert response.metadata.error_kind is None
    assert response.memory_updates == []


def test_retried_request_is_stored_once(settings, tmp_path, make_brain) -> None:
    store = CountingStore(JsonlMemoryStore(tmp_path / "memory"))
    brain = make_brain(settings, memory_store=store)
    request = AgentRequest(request_id="retry-1", conversation_id="c1", message="what is my balance?")

    first = brain.process(request)
    second = brain.process(request)

    assert first.response_id == second.response_id
    assert len(first.memory_updates) == 3
    assert second.memory_updates == []
    assert len(store.appended) == 3


def test_partial_parallel_failure_scales_confidence(settings, make_brain) -> None:
    def news(params):
        raise RuntimeError("news feed down")

    registry = ToolRegistry()
    registry.register(FunctionTool(name="weather-tool", fn=lambda params: "Sunny, 21C"))
    registry.register(FunctionTool(name="news-tool", fn=news))

    response = make_brain(settings, tool_registry=registry).process(
        AgentRequest(conversation_id="c1", message="weather and news please")
    )

    assert _events(response)["PlanCreated"] == "PARALLEL with 2 steps"
    assert _events(response)["ExecutionFinished"] == "PARTIALLY_FAILED"
    assert response.content == "Sunny, 21C"
    assert response.confidence == pytest.approx(response.decision.confidence * 0.5)


def test_successful_tool_sequence_is_remembered_and_reused(settings, make_brain) -> None:
    registry = ToolRegistry()
    registry.register(FunctionTool(name="ticket-tool", fn=lambda params: "ticket T-9", side_effect="write"))
    registry.register(FunctionTool(name="mail-tool", fn=lambda params: "mail sent", side_effect="write"))
    brain = make_brain(settings, tool_registry=registry)

    first = brain.process(AgentRequest(conversation_id="c1", message="create a ticket and mail the team"))
    second = brain.process(AgentRequest(conversation_id="c1", message="create a ticket and mail the team!"))

    assert first.decision.type is DecisionType.MULTI_STEP_PLAN
    assert MemoryTier.PROCEDURAL in {update.tier for update in first.memory_updates}
    assert first.content == "ticket T-9\nmail sent"
    assert second.decision.reasoning.startswith("A remembered procedure")


def test_full_working_memory_triggers_background_consolidation(tmp_path, make_brain) -> None:
    settings = AgentSettings(
        memory=MemorySettings(state_dir=str(tmp_path), working_limit=2, keep_working_after_consolidation=1)
    )
    store = CountingStore(JsonlMemoryStore(tmp_path / "memory", keep_working=1))
    brain = make_brain(settings, memory_store=store)

    brain.process(AgentRequest(conversation_id="c1", message="hello there"))
    brain.process(AgentRequest(conversation_id="c1", message="hello again"))

    deadline = time.monotonic() + 5
    while not store.consolidated and time.monotonic() < deadline:
        time.sleep(0.05)
    assert store.consolidated == ["c1"]
