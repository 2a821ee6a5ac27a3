from __future__ import annotations

import time

import pytest

from microagent.core.config.settings import MemorySettings
from microagent.core.memory.manager import MemoryManager
from microagent.core.memory.schemas import MemoryTier, MessageRole
from microagent.core.orchestration.schemas import AgentRequest, AgentResponse, ResponseMetadata

from fakes import CountingStore, SlowStore


def _exchange(
    message: str = "what is my balance?",
    reply: str = "Your balance is 42.",
    request_id: str = "r1",
    *,
    user_id: str = "anonymous",
    conversation_id: str = "c1",
):
    request = AgentRequest(request_id=request_id, conversation_id=conversation_id, user_id=user_id, message=message)
    response = AgentResponse(
        conversation_id=conversation_id,
        request_id=request_id,
        content=reply,
        confidence=0.8,
        metadata=ResponseMetadata(execution_path="DIRECT_RESPONSE"),
    )
    return request, response


def test_store_is_idempotent_for_the_same_request_and_response(jsonl_store, make_context) -> None:
    store = CountingStore(jsonl_store)
    manager = MemoryManager(store)
    request, response = _exchange()

    first = manager.store(request, response, make_context())
    second = manager.store(request, response, make_context())

    assert len(first) == 3
    assert second == []
    assert len(store.appended) == 3
    assert [update.tier for update in first] == [MemoryTier.WORKING, MemoryTier.WORKING, MemoryTier.EPISODIC]


def test_retrieve_after_store_includes_the_new_messages(jsonl_store, make_context) -> None:
    manager = MemoryManager(jsonl_store)
    request, response = _exchange()

    manager.store(request, response, make_context())
    snapshot = manager.retrieve("c1", make_context("balance"))

    assert [(message.role, message.content) for message in snapshot.working] == [
        (MessageRole.USER, "what is my balance?"),
        (MessageRole.ASSISTANT, "Your balance is 42."),
    ]
    assert snapshot.episodic[0].content.startswith("User asked: what is my balance?")
    assert snapshot.degraded_tiers == []


def test_failing_tier_comes_back_empty(jsonl_store, make_context) -> None:
    MemoryManager(jsonl_store).store(*_exchange(), make_context())
    manager = MemoryManager(CountingStore(jsonl_store, failing_tiers={MemoryTier.EPISODIC}))

    snapshot = manager.retrieve("c1", make_context())

    assert snapshot.degraded_tiers == [MemoryTier.EPISODIC]
    assert snapshot.episodic == []
    assert len(snapshot.working) == 2


def test_slow_tier_is_dropped_after_the_budget(jsonl_store, make_context) -> None:
    store = SlowStore(jsonl_store, slow_tiers={MemoryTier.SEMANTIC}, delay_s=1.0)
    manager = MemoryManager(store, MemorySettings(retrieval_timeout_s=0.2))

    start = time.perf_counter()
    snapshot = manager.retrieve("c1", make_context())

    assert time.perf_counter() - start < 0.8
    assert snapshot.degraded_tiers == [MemoryTier.SEMANTIC]


def test_failed_write_can_be_retried(jsonl_store, make_context) -> None:
    store = CountingStore(jsonl_store, fail_appends=True)
    manager = MemoryManager(store)
    request, response = _exchange()

    with pytest.raises(ConnectionError):
        manager.store(request, response, make_context())

    store.fail_appends = False
    committed = manager.store(request, response, make_context())

    assert len(committed) == 3
    assert len(store.appended) == 3


def test_preferences_become_semantic_facts(jsonl_store, make_context) -> None:
    manager = MemoryManager(jsonl_store)
    request, response = _exchange(message="remember that I prefer email updates", reply="Noted.")

    committed = manager.store(request, response, make_context())
    snapshot = manager.retrieve("c1", make_context())

    assert MemoryTier.SEMANTIC in {update.tier for update in committed}
    assert "remember that I prefer email updates" in snapshot.semantic.values()


def test_consolidate_summarises_and_compacts_working_memory(jsonl_store, make_context) -> None:
    store = CountingStore(jsonl_store)
    manager = MemoryManager(store, MemorySettings(keep_working_after_consolidation=4))
    for index in range(6):
        manager.store(*_exchange(f"question {index}?", f"answer {index}.", request_id=f"r{index}"), make_context())

    committed = manager.consolidate("c1")
    snapshot = manager.retrieve("c1", make_context())

    assert store.consolidated == ["c1"]
    assert any(update.summary == "Consolidated 8 messages" for update in committed)
    assert [message.content for message in snapshot.working] == ["question 4?", "answer 4.", "question 5?", "answer 5."]
    assert manager.consolidate("c1") == []


def test_consolidate_async_runs_in_the_background(jsonl_store, make_context) -> None:
    store = CountingStore(jsonl_store)
    manager = MemoryManager(store, MemorySettings(keep_working_after_consolidation=2, working_limit=4))
    for index in range(3):
        manager.store(*_exchange(f"question {index}?", f"answer {index}.", request_id=f"r{index}"), make_context())
    assert manager.needs_consolidation(manager.retrieve("c1", make_context())) is True

    job_id = manager.consolidate_async("c1")
    deadline = time.monotonic() + 5
    while not store.consolidated and time.monotonic() < deadline:
        time.sleep(0.05)
    manager.shutdown()

    assert job_id == "consolidate:c1"
    assert store.consolidated == ["c1"]


def test_memory_is_private_to_each_user(jsonl_store, make_context) -> None:
    manager = MemoryManager(jsonl_store)
    preference = "remember that I always want answers in French"
    manager.store(
        *_exchange(preference, "Noted.", request_id="r-alice", user_id="alice", conversation_id="alice-1"),
        make_context(preference, user_id="alice", conversation_id="alice-1"),
    )

    bob = manager.retrieve("bob-1", make_context(preference, user_id="bob", conversation_id="bob-1"))
    alice = manager.retrieve("alice-2", make_context("answers in French", user_id="alice", conversation_id="alice-2"))

    assert bob.semantic == {}
    assert bob.episodic == []
    assert bob.working == []
    assert preference in alice.semantic.values()
    assert [episode.user_id for episode in alice.episodic] == ["alice"]


def test_anonymous_memory_stays_in_its_conversation(jsonl_store, make_context) -> None:
    manager = MemoryManager(jsonl_store)
    manager.store(*_exchange("remember that I like short answers", "Noted."), make_context())

    other = manager.retrieve("c2", make_context("short answers", conversation_id="c2"))
    same = manager.retrieve("c1", make_context("short answers"))

    assert other.semantic == {}
    assert other.episodic == []
    assert "remember that I like short answers" in same.semantic.values()
    assert len(same.episodic) == 1


def test_consolidation_keeps_messages_stored_while_it_ran(jsonl_store, make_context) -> None:
    store = CountingStore(jsonl_store)
    manager = MemoryManager(store, MemorySettings(keep_working_after_consolidation=4))
    for index in range(4):
        manager.store(*_exchange(f"question {index}?", f"answer {index}.", request_id=f"r{index}"), make_context())

    def late_request() -> None:
        manager.store(*_exchange("question 4?", "answer 4.", request_id="r4"), make_context())

    store.before_consolidate = late_request
    committed = manager.consolidate("c1")
    snapshot = manager.retrieve("c1", make_context())

    assert any(update.summary == "Consolidated 4 messages" for update in committed)
    assert [message.content for message in snapshot.working] == [
        "question 2?",
        "answer 2.",
        "question 3?",
        "answer 3.",
        "question 4?",
        "answer 4.",
    ]
