from __future__ import annotations

import re
import threading
from typing import Any

from .base import Tool
from .schemas import ToolMetadata, ToolSchema

_WORD_RE = re.compile(r"[a-z0-9]+")


def tool_keywords(name: str, capabilities: frozenset[str] | set[str] | list[str] = ()) -> set[str]:
    words = set(_WORD_RE.findall(name.casefold()))
    for capability in capabilities:
        words.update(_WORD_RE.findall(str(capability).casefold()))
    words.discard("tool")
    return words


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}
        self._lock = threading.Lock()

    def register(self, tool: Tool) -> None:
        if not hasattr(tool, "side_effect"):
            setattr(tool, "side_effect", "read")
        if not getattr(tool, "capabilities", None):
            setattr(tool, "capabilities", frozenset())
        if getattr(tool, "schema", None) is None:
            setattr(tool, "schema", ToolSchema())
        if getattr(tool, "metadata", None) is None:
            setattr(tool, "metadata", ToolMetadata())
        with self._lock:
            self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        with self._lock:
            self._tools.pop(name, None)

    def get(self, name: str) -> Tool:
        with self._lock:
            return self._tools[name]

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._tools

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._tools.keys())

    def find_by_capability(self, capability: str) -> list[Tool]:
        wanted = capability.casefold()
        with self._lock:
            tools = list(self._tools.values())
        return [tool for tool in tools if wanted in {str(item).casefold() for item in tool.capabilities}]

    def descriptors(self) -> list[dict[str, Any]]:
        with self._lock:
            tools = sorted(self._tools.values(), key=lambda item: item.name)
        return [
            {
                "name": tool.name,
                "description": getattr(tool, "description", ""),
                "capabilities": sorted(tool.capabilities),
                "side_effect": tool.side_effect,
                "version": tool.metadata.version,
                "category": tool.metadata.category.value,
                "parameters": [item.model_dump(mode="json") for item in tool.schema.parameters],
                "output": tool.schema.output.model_dump(mode="json"),
            }
            for tool in tools
        ]
