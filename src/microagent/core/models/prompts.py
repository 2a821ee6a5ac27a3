from __future__ import annotations

import json
from typing import Any

SYSTEM_PROMPT = "You are a careful assistant that answers using the context you are given."

INTENT_TYPES = ("INFORMATIONAL", "TRANSACTIONAL", "CONVERSATIONAL", "ANALYTICAL")


def classifier_system_prompt() -> str:
    return (
        "You classify the intent of a single user message. "
        f"Allowed intent types: {', '.join(INTENT_TYPES)}. "
        "Confidence is a number between 0 and 1."
    )


def classifier_user_prompt(text: str, context: dict[str, Any]) -> str:
    schema = {"intent": "INFORMATIONAL", "confidence": 0.9}
    return (
        f"Message: {text}\n\n"
        f"Context: {json.dumps(context, ensure_ascii=False, default=str)}\n\n"
        f"Return JSON with this shape: {json.dumps(schema)}"
    )


def response_prompt(message: str, memory_block: str, outputs: list[str] | None = None) -> str:
    parts = [f"User message: {message}"]
    if memory_block:
        parts.append(f"Relevant memory:\n{memory_block}")
    if outputs:
        parts.append("Tool results:\n" + "\n".join(f"- {item}" for item in outputs))
    parts.append("Write the reply to the user.")
    return "\n\n".join(parts)


def clarification_prompt(message: str) -> str:
    return f"The request '{message}' is ambiguous. Ask the user one short clarifying question."


def summary_prompt(transcript: str, max_bullets: int) -> str:
    return f"Return up to {max_bullets} bullet points summarising this conversation:\n{transcript}"
