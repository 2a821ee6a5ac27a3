from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any

import numpy as np

from .embeddings import HashingEmbedder, as_matrix, cosine_scores
from .schemas import ANONYMOUS_USER, Episode, MemorySnapshot, MemoryTier, MemoryUpdate, Message

_DEFAULT_LIMITS = {
    MemoryTier.WORKING: 20,
    MemoryTier.EPISODIC: 5,
    MemoryTier.SEMANTIC: 20,
    MemoryTier.PROCEDURAL: 10,
}


def _owned_by(item: dict[str, Any], conversation_id: str, user_id: str | None) -> bool:
    if not user_id or user_id == ANONYMOUS_USER:
        return item.get("conversation_id") == conversation_id
    return item.get("user_id") == user_id


class JsonlMemoryStore:
    """File-backed ``MemoryStore``: one JSONL file per tier under ``state_dir``.

    Supported retrieval filters:

    - ``tiers``: tier names to load (default: all four)
    - ``limit``: maximum items for the requested tier(s)
    - ``query``: free text used to rank episodic entries
    - ``query_embedding``: precomputed vector, wins over ``query``
    - ``user_id``: owner whose episodes and user-scoped facts are visible;
      anonymous callers only see entries from their own conversation
    """

    def __init__(self, state_dir: Path, embedder: HashingEmbedder | None = None, keep_working: int = 10) -> None:
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)
        self.embedder = embedder or HashingEmbedder()
        self.keep_working = keep_working
        self._lock = threading.RLock()
        self._paths = {tier: self.state_dir / f"{tier.value.lower()}.jsonl" for tier in MemoryTier}

    def retrieve_memory(self, conversation_id: str, filters: dict[str, Any]) -> MemorySnapshot:
        tiers = [MemoryTier(item) for item in filters.get("tiers") or list(MemoryTier)]
        limit = filters.get("limit")

        def limit_for(tier: MemoryTier) -> int:
            return int(limit) if limit is not None else _DEFAULT_LIMITS[tier]

        payload: dict[str, Any] = {"conversation_id": conversation_id}
        if MemoryTier.WORKING in tiers:
            payload["working"] = self._working(conversation_id, limit_for(MemoryTier.WORKING))
        if MemoryTier.EPISODIC in tiers:
            payload["episodic"] = self._episodic(conversation_id, filters, limit_for(MemoryTier.EPISODIC))
        if MemoryTier.SEMANTIC in tiers:
            payload["semantic"] = self._semantic(conversation_id, filters.get("user_id"), limit_for(MemoryTier.SEMANTIC))
        if MemoryTier.PROCEDURAL in tiers:
            payload["procedural"] = self._procedural(limit_for(MemoryTier.PROCEDURAL))
        return MemorySnapshot(**payload)

    def append_memory_update(self, update: MemoryUpdate) -> None:
        value = dict(update.value or {})
        record: dict[str, Any] = {
            "update_id": update.id,
            "conversation_id": update.conversation_id,
            "user_id": update.user_id,
        }

        if update.tier is MemoryTier.WORKING:
            message = Message.model_validate(value)
            record.update(json.loads(message.model_dump_json()))
        elif update.tier is MemoryTier.EPISODIC:
            content = str(value.get("content") or update.summary)
            embedding = value.get("embedding") or self.embedder.embed(content).tolist()
            episode = Episode(
                conversation_id=update.conversation_id,
                user_id=update.user_id,
                content=content,
                context=dict(value.get("context") or {}),
                importance=float(value.get("importance", 0.5)),
                embedding=[float(item) for item in embedding],
            )
            record.update(json.loads(episode.model_dump_json()))
        elif update.tier is MemoryTier.SEMANTIC:
            scope = value.get("scope", "global")
            match = {"key": value["key"], "scope": scope}
            if scope == "conversation":
                match["conversation_id"] = update.conversation_id
            elif scope == "user":
                match["user_id"] = update.user_id
            self._upsert(
                MemoryTier.SEMANTIC,
                match=match,
                record={**record, "key": value["key"], "value": value.get("value"), "scope": scope},
            )
            return
        else:
            self._upsert(
                MemoryTier.PROCEDURAL,
                match={"name": value["name"]},
                record={**record, "name": value["name"], "value": value.get("value")},
            )
            return

        with self._lock:
            with self._paths[update.tier].open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, ensure_ascii=False) + "\n")

    def consolidate(self, conversation_id: str, up_to: str | None = None) -> None:
        """Compact the working memory of a conversation.

        With ``up_to`` every message up to and including that message id is
        dropped, whatever arrived after it stays. Without it all but the
        newest ``keep_working`` messages go.
        """
        with self._lock:
            records = self._load(MemoryTier.WORKING)
            mine = [item for item in records if item.get("conversation_id") == conversation_id]
            if up_to is not None:
                ids = [item.get("id") for item in mine]
                if up_to not in ids:
                    return
                cut = ids.index(up_to) + 1
            else:
                cut = len(mine) - self.keep_working
            if cut <= 0:
                return
            dropped = {item["update_id"] for item in mine[:cut]}
            self._write(MemoryTier.WORKING, [item for item in records if item.get("update_id") not in dropped])

    def _working(self, conversation_id: str, limit: int) -> list[Message]:
        records = [item for item in self._load(MemoryTier.WORKING) if item.get("conversation_id") == conversation_id]
        messages = [Message.model_validate(item) for item in records[-limit:]] if limit > 0 else []
        return messages

    def _episodic(self, conversation_id: str, filters: dict[str, Any], limit: int) -> list[Episode]:
        if limit <= 0:
            return []
        user_id = filters.get("user_id")
        episodes = [
            Episode.model_validate(item)
            for item in self._load(MemoryTier.EPISODIC)
            if _owned_by(item, conversation_id, user_id)
        ]
        if not episodes:
            return []

        query_embedding = filters.get("query_embedding")
        if query_embedding is None and filters.get("query"):
            query_embedding = self.embedder.embed(str(filters["query"]))
        if query_embedding is None:
            ranked = sorted(episodes, key=lambda item: (item.importance, item.timestamp), reverse=True)
            return ranked[:limit]

        vector = np.asarray(query_embedding, dtype=np.float32)
        matrix = as_matrix([item.embedding for item in episodes], vector.shape[0])
        importance = np.asarray([item.importance for item in episodes], dtype=np.float32)
        scores = cosine_scores(matrix, vector) * (0.5 + 0.5 * importance)
        order = (-scores).argsort()[:limit].tolist()
        return [episodes[index].model_copy(update={"score": float(scores[index])}) for index in order]

    def _semantic(self, conversation_id: str, user_id: str | None, limit: int) -> dict[str, Any]:
        facts: dict[str, Any] = {}
        for item in self._load(MemoryTier.SEMANTIC):
            scope = item.get("scope", "global")
            if scope == "conversation" and item.get("conversation_id") != conversation_id:
                continue
            if scope == "user" and not _owned_by(item, conversation_id, user_id):
                continue
            facts[item["key"]] = item.get("value")
        return dict(list(facts.items())[-limit:]) if limit > 0 else {}

    def _procedural(self, limit: int) -> dict[str, Any]:
        templates = {item["name"]: item.get("value") for item in self._load(MemoryTier.PROCEDURAL)}
        return dict(list(templates.items())[-limit:]) if limit > 0 else {}

    def _upsert(self, tier: MemoryTier, match: dict[str, Any], record: dict[str, Any]) -> None:
        with self._lock:
            records = self._load(tier)
            for index, existing in enumerate(records):
                if all(existing.get(key) == value for key, value in match.items()):
                    records[index] = record
                    self._write(tier, records)
                    return
            records.append(record)
            self._write(tier, records)

    def _load(self, tier: MemoryTier) -> list[dict[str, Any]]:
        path = self._paths[tier]
        with self._lock:
            if not path.exists():
                return []
            items: list[dict[str, Any]] = []
            with path.open("r", encoding="utf-8") as handle:
                for line in handle:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        items.append(json.loads(line))
                    except json.JSONDecodeError:
                        continue
            return items

    def _write(self, tier: MemoryTier, records: list[dict[str, Any]]) -> None:
        path = self._paths[tier]
        tmp_path = path.with_suffix(".tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            for record in records:
                handle.write(json.dumps(record, ensure_ascii=False) + "\n")
        tmp_path.replace(path)
