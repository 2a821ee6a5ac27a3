from __future__ import annotations

import hashlib
import json
from typing import Any


def canonical_json(obj: Any) -> str:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def _stable_hash(parts: list[str]) -> str:
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def memory_update_key(request_id: str, response_id: str, tier: str, index: int) -> str:
    return _stable_hash(["memory_update", request_id, response_id, tier, str(index)])


def consolidation_key(conversation_id: str, last_message_id: str) -> str:
    return _stable_hash(["consolidation", conversation_id, last_message_id])


def response_key(request_id: str) -> str:
    """Response id derived from the request id, so a retried request answers under the same id."""
    return _stable_hash(["response", request_id])[:32]
