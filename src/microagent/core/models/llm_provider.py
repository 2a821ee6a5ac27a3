from __future__ import annotations

import json
import logging
import time
from typing import Any

import httpx

from microagent.core.config.settings import LLMSettings
from microagent.core.errors import LLMOutputError, LLMUnavailable, ServiceDegradedError
from microagent.core.infra.breaker_manager import BreakerManager
from microagent.core.reasoning.schemas import IntentType

from .llm_openai_compat import OpenAICompatClient
from .prompts import SYSTEM_PROMPT, classifier_system_prompt, classifier_user_prompt

logger = logging.getLogger("microagent.llm")


class AgentLLM:
    """``LanguageModel`` backed by an OpenAI-compatible chat completions endpoint."""

    def __init__(self, settings: LLMSettings | None = None, breaker_manager: BreakerManager | None = None) -> None:
        self.settings = settings or LLMSettings()
        self.model_name = self.settings.model
        self._compat = OpenAICompatClient(url=self.settings.url, model=self.settings.model, timeout_s=self.settings.timeout_s)
        self.breaker_manager = breaker_manager or BreakerManager()

    @property
    def enabled(self) -> bool:
        return self.settings.provider != "off"

    def classify(self, text: str, context: dict[str, Any]) -> tuple[IntentType, float]:
        prompt_context = {key: value for key, value in context.items() if key != "timeout_s"}
        payload = self.complete_json(
            system=classifier_system_prompt(),
            user=classifier_user_prompt(text, prompt_context),
            timeout_s=context.get("timeout_s"),
        )
        try:
            intent_type = IntentType(str(payload.get("intent", "")).upper())
            confidence = float(payload.get("confidence", 0.0))
        except (TypeError, ValueError) as exc:
            raise LLMOutputError(f"unusable classification payload: {payload!r}") from exc
        return intent_type, min(1.0, max(0.0, confidence))

    def generate(self, prompt: str, context: dict[str, Any]) -> str:
        system = str(context.get("system") or SYSTEM_PROMPT)
        return self._call(
            system=system,
            user=prompt,
            max_tokens=self.settings.max_tokens_text,
            temperature=self.settings.temperature,
            mode="text",
            timeout_s=context.get("timeout_s"),
        )

    def complete_json(self, system: str, user: str, timeout_s: float | None = None) -> dict:
        raw = self._call(
            system=system,
            user=f"Return strict JSON only with no markdown fences and no prose.\n{user}",
            max_tokens=self.settings.max_tokens_json,
            temperature=0.0,
            json_mode=True,
            mode="json",
            timeout_s=timeout_s,
        )
        parsed = self._parse_json(raw)
        if parsed is None:
            raise LLMOutputError("Could not parse JSON response")
        return parsed

    def _call(
        self,
        system: str,
        user: str,
        max_tokens: int,
        temperature: float,
        json_mode: bool = False,
        mode: str = "text",
        timeout_s: float | None = None,
    ) -> str:
        """One call plus one retry, both inside ``timeout_s`` when the caller has a deadline."""
        if not self.enabled:
            raise LLMUnavailable("LLM provider is off")

        budget = self.settings.timeout_s if timeout_s is None else min(self.settings.timeout_s, timeout_s)
        start = time.perf_counter()
        give_up_at = time.monotonic() + budget
        last_error: Exception | None = None
        for _ in range(2):
            remaining = give_up_at - time.monotonic()
            if remaining <= 0:
                break
            try:
                output = self.breaker_manager.wrap(
                    "llm",
                    lambda: self._compat.chat_completion(
                        system=system,
                        user=user,
                        temperature=temperature,
                        max_tokens=max_tokens,
                        json_mode=json_mode,
                        timeout_s=remaining,
                    ),
                )
                self._log_call(mode, start, ok=True, system=system, user=user)
                return output
            except ServiceDegradedError as exc:
                raise LLMUnavailable(str(exc)) from exc
            except (httpx.HTTPError, ValueError, RuntimeError) as exc:
                last_error = exc
                continue

        self._log_call(mode, start, ok=False, system=system, user=user)
        if last_error is None:
            raise LLMUnavailable("no time left for the LLM call")
        raise LLMUnavailable(f"LLM request failed: {last_error}")

    def _log_call(self, mode: str, start: float, *, ok: bool, system: str, user: str) -> None:
        logger.info(
            "llm_call",
            extra={
                "extra_fields": {
                    "provider": self.settings.provider,
                    "model": self.settings.model,
                    "mode": mode,
                    "duration_ms": int((time.perf_counter() - start) * 1000),
                    "ok": ok,
                    "system_len": len(system),
                    "user_len": len(user),
                }
            },
        )

    def _parse_json(self, raw: str) -> dict | None:
        cleaned = raw.strip()
        if cleaned.startswith("```"):
            cleaned = cleaned.strip("`")
            if cleaned.startswith("json"):
                cleaned = cleaned[4:].strip()
        start = cleaned.find("{")
        end = cleaned.rfind("}")
        if start == -1 or end == -1 or end < start:
            return None
        try:
            parsed = json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError:
            return None
        return parsed if isinstance(parsed, dict) else None
