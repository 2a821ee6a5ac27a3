from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Protocol

from .schemas import ToolMetadata, ToolSchema


class Tool(Protocol):
    name: str
    description: str
    capabilities: frozenset[str]
    side_effect: str
    schema: ToolSchema
    metadata: ToolMetadata

    def run(self, parameters: dict[str, Any]) -> Any: ...


@dataclass
class FunctionTool:
    """Wraps a plain callable so it can be registered as a tool."""

    name: str
    fn: Callable[[dict[str, Any]], Any]
    description: str = ""
    capabilities: frozenset[str] = field(default_factory=frozenset)
    side_effect: str = "read"
    schema: ToolSchema = field(default_factory=ToolSchema)
    metadata: ToolMetadata = field(default_factory=ToolMetadata)

    def run(self, parameters: dict[str, Any]) -> Any:
        return self.fn(parameters)
