from __future__ import annotations

import re

from microagent.core.errors import CollaboratorUnavailable, LLMOutputError
from microagent.core.integrations.base import LanguageModel
from microagent.core.memory.schemas import Message
from microagent.core.models.prompts import summary_prompt


class Summarizer:
    def __init__(self, llm: LanguageModel | None = None) -> None:
        self.llm = llm

    def summarize_messages(self, messages: list[Message], max_bullets: int = 6) -> list[str]:
        transcript = "\n".join(f"{message.role.value}: {message.content}" for message in messages if message.content.strip())
        if not transcript:
            return []
        if self.llm is not None:
            try:
                response = self.llm.generate(summary_prompt(transcript, max_bullets), {"purpose": "consolidation"})
                bullets = [line.strip("-* \t") for line in response.splitlines() if line.strip()]
                if bullets:
                    return bullets[:max_bullets]
            except (CollaboratorUnavailable, LLMOutputError):
                pass
        return self._fallback_bullets(messages, max_bullets=max_bullets)

    def _fallback_bullets(self, messages: list[Message], max_bullets: int) -> list[str]:
        bullets: list[str] = []
        for message in messages:
            first = re.split(r"(?<=[.!?])\s", message.content.strip(), maxsplit=1)[0]
            if first:
                bullets.append(f"{message.role.value}: {first[:140]}")
        return bullets[-max_bullets:]
