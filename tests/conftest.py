from __future__ import annotations

import os

import pytest

from microagent.core.config.settings import AgentSettings, MemorySettings
from microagent.core.context.builder import ContextBuilder
from microagent.core.memory.embeddings import HashingEmbedder
from microagent.core.memory.store import JsonlMemoryStore
from microagent.core.orchestration.schemas import AgentRequest


@pytest.fixture(autouse=True)
def isolate_microagent_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in list(os.environ):
        if name.startswith("MICROAGENT_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def settings(tmp_path) -> AgentSettings:
    return AgentSettings(memory=MemorySettings(state_dir=str(tmp_path)))


@pytest.fixture
def jsonl_store(tmp_path) -> JsonlMemoryStore:
    return JsonlMemoryStore(tmp_path / "memory", embedder=HashingEmbedder(32), keep_working=4)


@pytest.fixture
def make_context():
    def build(
        message: str = "hello",
        tools: list | None = None,
        *,
        user_id: str = "anonymous",
        conversation_id: str = "c1",
        **extra,
    ):
        request = AgentRequest(
            conversation_id=conversation_id,
            user_id=user_id,
            message=message,
            context={"tools": tools or [], **extra},
        )
        return ContextBuilder().build_context(request)

    return build
