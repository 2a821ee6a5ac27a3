from __future__ import annotations

import functools
import logging
import time
from concurrent.futures import ThreadPoolExecutor, wait
from typing import TYPE_CHECKING, Any

from microagent.core.config.settings import MemorySettings
from microagent.core.context.schemas import AgentContext
from microagent.core.integrations.base import MemoryStore
from microagent.core.ledger.keys import consolidation_key
from microagent.core.ledger.ledger import WriteLedger
from microagent.core.summarize.summarizer import Summarizer

from .consolidation import ConsolidationScheduler
from .embeddings import HashingEmbedder
from .schemas import MemorySnapshot, MemoryTier, MemoryUpdate
from .write_policy import WritePolicy

if TYPE_CHECKING:
    from microagent.core.orchestration.schemas import AgentRequest, AgentResponse

logger = logging.getLogger("microagent.memory")


class MemoryManager:
    """Reads bounded snapshots from the memory store and writes updates back exactly once.

    Each tier is fetched independently within ``retrieval_timeout_s``; a tier
    that errors or misses the budget comes back empty and is listed in
    ``MemorySnapshot.degraded_tiers`` instead of failing the snapshot.
    """

    def __init__(
        self,
        store: MemoryStore,
        settings: MemorySettings | None = None,
        *,
        ledger: WriteLedger | None = None,
        policy: WritePolicy | None = None,
        embedder: HashingEmbedder | None = None,
        summarizer: Summarizer | None = None,
        scheduler: ConsolidationScheduler | None = None,
    ) -> None:
        self.memory_store = store
        self.settings = settings or MemorySettings()
        self.ledger = ledger or WriteLedger()
        self.policy = policy or WritePolicy()
        self.embedder = embedder or HashingEmbedder(self.settings.embedding_dim)
        self.summarizer = summarizer or Summarizer()
        self.scheduler = scheduler or ConsolidationScheduler()
        self._pool = ThreadPoolExecutor(max_workers=len(MemoryTier), thread_name_prefix="microagent-memory")

    def retrieve(self, conversation_id: str, context: AgentContext) -> MemorySnapshot:
        query = str(context.environment.get("message") or "")
        budget = context.deadline.bound(self.settings.retrieval_timeout_s)
        start = time.perf_counter()

        futures = {
            tier: self._pool.submit(
                self.memory_store.retrieve_memory, conversation_id, self._filters(tier, query, context.user_id)
            )
            for tier in MemoryTier
        }
        wait(list(futures.values()), timeout=budget)

        parts: dict[str, Any] = {}
        degraded: list[MemoryTier] = []
        for tier, future in futures.items():
            if not future.done():
                future.cancel()
                degraded.append(tier)
                logger.warning("memory_tier_timeout", extra={"extra_fields": {"tier": tier.value, "budget_s": budget}})
                continue
            try:
                partial = future.result()
            except Exception as exc:
                degraded.append(tier)
                logger.warning("memory_tier_unavailable", extra={"extra_fields": {"tier": tier.value, "error": str(exc)}})
                continue
            parts.update(self._tier_payload(tier, partial))

        snapshot = MemorySnapshot(conversation_id=conversation_id, degraded_tiers=degraded, **parts)
        logger.info(
            "memory_retrieved",
            extra={
                "extra_fields": {
                    "working_count": len(snapshot.working),
                    "episodic_count": len(snapshot.episodic),
                    "semantic_count": len(snapshot.semantic),
                    "procedural_count": len(snapshot.procedural),
                    "degraded_tiers": [tier.value for tier in degraded],
                    "duration_ms": int((time.perf_counter() - start) * 1000),
                }
            },
        )
        return snapshot

    def store(self, request: AgentRequest, response: AgentResponse, context: AgentContext) -> list[MemoryUpdate]:
        return self._commit(self.policy.propose(request, response), kind="memory_update")

    def consolidate(self, conversation_id: str, user_id: str | None = None) -> list[MemoryUpdate]:
        snapshot = self.memory_store.retrieve_memory(
            conversation_id,
            {"tiers": [MemoryTier.WORKING.value], "limit": self.settings.working_limit * 10},
        )
        messages = snapshot.working
        if len(messages) <= self.settings.keep_working_after_consolidation:
            return []

        older = messages[: len(messages) - self.settings.keep_working_after_consolidation]
        key = consolidation_key(conversation_id, older[-1].id)
        bullets = self.summarizer.summarize_messages(older)
        updates = [
            MemoryUpdate(
                id=f"{key}:episodic",
                conversation_id=conversation_id,
                user_id=user_id,
                tier=MemoryTier.EPISODIC,
                summary=f"Consolidated {len(older)} messages",
                value={
                    "content": "\n".join(bullets),
                    "context": {"source": "consolidation", "message_count": len(older)},
                    "importance": 0.7,
                },
            )
        ]
        for index, message in enumerate(older):
            for fact in self.policy.preference_facts(message.content, user_id) if message.role.value == "user" else []:
                updates.append(
                    MemoryUpdate(
                        id=f"{key}:semantic:{index}",
                        conversation_id=conversation_id,
                        user_id=user_id,
                        tier=MemoryTier.SEMANTIC,
                        summary=f"preference {fact['key']}",
                        value=fact,
                    )
                )

        committed = self._commit(updates, kind="consolidation")
        self.memory_store.consolidate(conversation_id, up_to=older[-1].id)
        logger.info(
            "memory_consolidated",
            extra={"extra_fields": {"conversation_id": conversation_id, "summarized": len(older), "committed": len(committed)}},
        )
        return committed

    def consolidate_async(self, conversation_id: str, user_id: str | None = None) -> str:
        return self.scheduler.submit(conversation_id, functools.partial(self.consolidate, user_id=user_id))

    def needs_consolidation(self, snapshot: MemorySnapshot) -> bool:
        return len(snapshot.working) >= self.settings.working_limit

    def shutdown(self) -> None:
        self.scheduler.shutdown()
        self._pool.shutdown(wait=False, cancel_futures=True)

    def _commit(self, updates: list[MemoryUpdate], kind: str) -> list[MemoryUpdate]:
        committed: list[MemoryUpdate] = []
        for update in updates:
            if not self.ledger.try_start(update.id, kind=kind, meta={"tier": update.tier.value}):
                logger.info("memory_update_deduplicated", extra={"extra_fields": {"update_id": update.id}})
                continue
            try:
                self.memory_store.append_memory_update(update)
            except Exception as exc:
                self.ledger.mark(update.id, "failed", {"error": str(exc)})
                raise
            self.ledger.mark(update.id, "succeeded")
            committed.append(update)
        return committed

    def _filters(self, tier: MemoryTier, query: str, user_id: str | None = None) -> dict[str, Any]:
        limits = {
            MemoryTier.WORKING: self.settings.working_limit,
            MemoryTier.EPISODIC: self.settings.episodic_limit,
            MemoryTier.SEMANTIC: self.settings.semantic_limit,
            MemoryTier.PROCEDURAL: self.settings.procedural_limit,
        }
        filters: dict[str, Any] = {"tiers": [tier.value], "limit": limits[tier]}
        if tier in (MemoryTier.EPISODIC, MemoryTier.SEMANTIC):
            filters["user_id"] = user_id
        if tier is MemoryTier.EPISODIC and query:
            filters["query"] = query
            filters["query_embedding"] = self.embedder.embed(query).tolist()
        return filters

    @staticmethod
    def _tier_payload(tier: MemoryTier, partial: MemorySnapshot) -> dict[str, Any]:
        if tier is MemoryTier.WORKING:
            return {"working": partial.working}
        if tier is MemoryTier.EPISODIC:
            return {"episodic": partial.episodic}
        if tier is MemoryTier.SEMANTIC:
            return {"semantic": partial.semantic}
        return {"procedural": partial.procedural}
