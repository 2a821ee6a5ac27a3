from __future__ import annotations

from microagent.core.tools.base import FunctionTool
from microagent.core.tools.invoker import RegistryToolInvoker
from microagent.core.tools.registry import ToolRegistry, tool_keywords
from microagent.core.tools.schemas import (
    DataType,
    OutputSchema,
    ParameterDefinition,
    ToolCategory,
    ToolMetadata,
    ToolSchema,
)


def test_registry_register_find_and_describe() -> None:
    registry = ToolRegistry()
    registry.register(
        FunctionTool(
            name="ticket-tool",
            fn=lambda params: "ok",
            description="Opens support tickets",
            capabilities=frozenset({"support", "issue"}),
            side_effect="write",
        )
    )
    registry.register(FunctionTool(name="weather-tool", fn=lambda params: "sunny"))

    assert registry.names() == ["ticket-tool", "weather-tool"]
    assert [tool.name for tool in registry.find_by_capability("Support")] == ["ticket-tool"]
    assert registry.descriptors()[0] == {
        "name": "ticket-tool",
        "description": "Opens support tickets",
        "capabilities": ["issue", "support"],
        "side_effect": "write",
        "version": "1.0",
        "category": "custom",
        "parameters": [],
        "output": {"type": "string", "description": "", "format": None},
    }

    registry.unregister("weather-tool")
    assert registry.has("weather-tool") is False


def test_tool_keywords_drop_the_generic_suffix() -> None:
    assert tool_keywords("ticket-tool", ["open issue"]) == {"ticket", "open", "issue"}


def test_invoker_turns_exceptions_into_error_outcomes() -> None:
    def broken(params):
        raise ValueError("missing field 'title'")

    registry = ToolRegistry()
    registry.register(FunctionTool(name="echo", fn=lambda params: params["message"]))
    registry.register(FunctionTool(name="broken", fn=broken))
    invoker = RegistryToolInvoker(registry)

    ok = invoker.invoke("echo", {"message": "hi"}, timeout=1.0)
    failed = invoker.invoke("broken", {}, timeout=1.0)
    missing = invoker.invoke("nope", {}, timeout=1.0)
    invoker.shutdown()

    assert ok.ok and ok.output == "hi"
    assert failed.error == "missing field 'title'"
    assert missing.error == "unknown_tool:nope"


def _ticket_schema() -> ToolSchema:
    return ToolSchema(
        parameters=[
            ParameterDefinition(name="title", type=DataType.STRING, required=True),
            ParameterDefinition(name="priority", type=DataType.STRING, default="normal"),
            ParameterDefinition(name="count", type=DataType.INTEGER),
        ],
        output=OutputSchema(type=DataType.OBJECT, description="created ticket"),
    )


def test_descriptors_publish_parameters_and_metadata() -> None:
    registry = ToolRegistry()
    registry.register(
        FunctionTool(
            name="ticket-tool",
            fn=lambda params: params,
            schema=_ticket_schema(),
            metadata=ToolMetadata(version="2.1", category=ToolCategory.API),
        )
    )

    described = registry.descriptors()[0]

    assert described["version"] == "2.1"
    assert described["category"] == "api"
    assert [item["name"] for item in described["parameters"]] == ["title", "priority", "count"]
    assert described["parameters"][0]["required"] is True
    assert described["parameters"][1]["default"] == "normal"
    assert described["output"]["type"] == "object"


def test_invoker_rejects_a_missing_required_parameter() -> None:
    calls = []
    registry = ToolRegistry()
    registry.register(FunctionTool(name="ticket-tool", fn=calls.append, schema=_ticket_schema()))
    invoker = RegistryToolInvoker(registry)

    outcome = invoker.invoke("ticket-tool", {"priority": "high"}, timeout=1.0)
    invoker.shutdown()

    assert not outcome.ok
    assert outcome.error.startswith("invalid_parameters:ticket-tool")
    assert "missing required parameter 'title'" in outcome.error
    assert calls == []


def test_invoker_rejects_a_wrongly_typed_parameter() -> None:
    registry = ToolRegistry()
    registry.register(FunctionTool(name="ticket-tool", fn=lambda params: params, schema=_ticket_schema()))
    invoker = RegistryToolInvoker(registry)

    outcome = invoker.invoke("ticket-tool", {"title": "vpn down", "count": True}, timeout=1.0)
    invoker.shutdown()

    assert "parameter 'count' must be integer, got bool" in outcome.error


def test_invoker_fills_parameter_defaults() -> None:
    registry = ToolRegistry()
    registry.register(FunctionTool(name="ticket-tool", fn=lambda params: dict(params), schema=_ticket_schema()))
    invoker = RegistryToolInvoker(registry)

    outcome = invoker.invoke("ticket-tool", {"title": "vpn down", "extra": 1}, timeout=1.0)
    invoker.shutdown()

    assert outcome.ok
    assert outcome.output == {"title": "vpn down", "priority": "normal", "extra": 1}
