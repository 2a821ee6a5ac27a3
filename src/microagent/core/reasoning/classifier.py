from __future__ import annotations

import re

from .schemas import Entity, IntentType

_WORD_RE = re.compile(r"[a-z0-9]+")

# checked in this order; the first category with the most hits wins
_KEYWORDS: dict[IntentType, frozenset[str]] = {
    IntentType.INFORMATIONAL: frozenset({"what", "how", "why", "when", "where", "who", "which", "explain", "tell", "show"}),
    IntentType.TRANSACTIONAL: frozenset(
        {"create", "update", "delete", "cancel", "book", "send", "add", "remove", "open", "close", "schedule", "submit", "transfer"}
    ),
    IntentType.ANALYTICAL: frozenset({"analyze", "analyse", "compare", "report", "trend", "trends", "evaluate", "forecast", "summarize"}),
}

_ENTITY_PATTERNS: tuple[tuple[str, re.Pattern[str], float], ...] = (
    ("email", re.compile(r"[\w.+-]+@[\w-]+\.[\w.]+"), 0.95),
    ("date", re.compile(r"\b\d{4}-\d{2}-\d{2}\b"), 0.9),
    ("reference", re.compile(r"#[A-Za-z0-9-]+"), 0.85),
    ("amount", re.compile(r"[$€£]\s?\d+(?:[.,]\d+)?"), 0.85),
    ("number", re.compile(r"(?<![\w$€£#-])\d+(?:\.\d+)?\b"), 0.6),
    ("quoted", re.compile(r"\"([^\"]+)\"|'([^']+)'"), 0.7),
)


def tokenize(text: str) -> list[str]:
    return _WORD_RE.findall(text.casefold())


class KeywordClassifier:
    def __init__(self, version: str = "keywords-v1") -> None:
        self.version = version

    def classify(self, text: str) -> tuple[IntentType, float]:
        tokens = tokenize(text)
        hits = {intent_type: sum(1 for token in tokens if token in words) for intent_type, words in _KEYWORDS.items()}
        if "?" in text:
            hits[IntentType.INFORMATIONAL] += 1

        best_type, best_hits = IntentType.CONVERSATIONAL, 0
        for intent_type, count in hits.items():
            if count > best_hits:
                best_type, best_hits = intent_type, count
        if best_hits == 0:
            return IntentType.CONVERSATIONAL, 0.6
        return best_type, min(0.9, 0.7 + 0.1 * best_hits)


def extract_entities(text: str, tool_names: list[str] | None = None) -> list[Entity]:
    entities: list[Entity] = []
    seen: set[tuple[str, str]] = set()
    for entity_type, pattern, confidence in _ENTITY_PATTERNS:
        for match in pattern.finditer(text):
            value = next((group for group in match.groups() if group), match.group(0)) if match.groups() else match.group(0)
            if (entity_type, value) in seen:
                continue
            seen.add((entity_type, value))
            entities.append(Entity(type=entity_type, value=value, confidence=confidence))
    lowered = text.casefold()
    for name in tool_names or []:
        if name.casefold() in lowered:
            entities.append(Entity(type="tool", value=name, confidence=0.9))
    return entities
