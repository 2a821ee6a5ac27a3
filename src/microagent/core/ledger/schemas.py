from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class LedgerRecord(BaseModel):
    key: str
    kind: Literal["memory_update", "consolidation"]
    status: Literal["started", "succeeded", "failed"]
    ts_iso: str
    correlation_id: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict)
