from __future__ import annotations

from typing import Any

import httpx

_CONNECT_TIMEOUT_S = 5.0


def first_choice_text(data: Any) -> str:
    """Content of the first choice, or "" when the endpoint sent none."""
    if not isinstance(data, dict):
        return ""
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    message = choices[0].get("message") or {}
    return str(message.get("content") or "")


class OpenAICompatClient:
    """Chat-completions client for OpenAI-compatible servers (vLLM, llama.cpp, ...).

    ``timeout_s`` is the ceiling for one call; callers pass a smaller
    per-call budget when a request deadline is closer than that.
    """

    def __init__(self, url: str, model: str, timeout_s: float = 45.0) -> None:
        self.url = url
        self.model = model
        self.timeout_s = timeout_s

    def chat_completion(
        self,
        system: str,
        user: str,
        *,
        temperature: float,
        max_tokens: int,
        json_mode: bool = False,
        timeout_s: float | None = None,
    ) -> str:
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        response = httpx.post(self.url, json=payload, timeout=self._timeout(timeout_s))
        response.raise_for_status()
        return first_choice_text(response.json())

    def _timeout(self, timeout_s: float | None) -> httpx.Timeout:
        budget = self.timeout_s if timeout_s is None else max(0.0, min(self.timeout_s, timeout_s))
        return httpx.Timeout(budget, connect=min(budget, _CONNECT_TIMEOUT_S))
