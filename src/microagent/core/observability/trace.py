from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from microagent.core.orchestration.schemas import ReasoningStep, ReasoningTrace

logger = logging.getLogger("microagent.trace")


@dataclass
class Trace:
    """Stage-by-stage record of one ``process`` call.

    Events double as the response's reasoning steps, so each carries the
    stage name plus a short input/output rendering and optional confidence.
    """

    request_id: str
    correlation_id: str | None = None
    stage: str = "received"
    events: list[dict[str, Any]] = field(default_factory=list)
    _started: float = field(default_factory=time.perf_counter, repr=False)

    def enter(self, stage: str) -> None:
        self.stage = stage

    def emit(self, name: str, payload: dict[str, Any]) -> None:
        enriched_payload = dict(payload)
        enriched_payload.setdefault("request_id", self.request_id)
        if self.correlation_id:
            enriched_payload.setdefault("correlation_id", self.correlation_id)
        enriched_payload["elapsed_ms"] = self.elapsed_ms()
        self.events.append({"event": name, "stage": self.stage, "payload": enriched_payload})
        logger.debug(name, extra={"extra_fields": enriched_payload})

    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self._started) * 1000)

    def to_reasoning(self, justification: str = "") -> ReasoningTrace:
        steps = []
        for event in self.events:
            payload = event["payload"]
            confidence = payload.get("confidence")
            steps.append(
                ReasoningStep(
                    description=event["event"],
                    input=_render(payload.get("input")),
                    output=_render(payload.get("output")),
                    confidence=float(confidence) if confidence is not None else None,
                )
            )
        return ReasoningTrace(steps=steps, justification=justification)


def _render(value: Any) -> str | None:
    if value is None:
        return None
    text = value if isinstance(value, str) else repr(value)
    return text if len(text) <= 200 else text[:199] + "…"
