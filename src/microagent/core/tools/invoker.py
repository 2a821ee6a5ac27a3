from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Any

from microagent.core.errors import ToolParameterError
from microagent.core.integrations.base import ToolOutcome

from .registry import ToolRegistry

logger = logging.getLogger("microagent.tools")


class RegistryToolInvoker:
    """``ToolInvoker`` that runs tools from a registry on its own bounded pool."""

    def __init__(self, registry: ToolRegistry, max_workers: int = 4) -> None:
        self.registry = registry
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="microagent-tool")

    def invoke(self, tool_name: str, parameters: dict[str, Any], timeout: float | None) -> ToolOutcome:
        if not self.registry.has(tool_name):
            return ToolOutcome(error=f"unknown_tool:{tool_name}")
        tool = self.registry.get(tool_name)
        try:
            bound = tool.schema.bind(parameters)
        except ToolParameterError as exc:
            logger.info(
                "tool_parameters_rejected",
                extra={"extra_fields": {"tool_name": tool_name, "error": str(exc)}},
            )
            return ToolOutcome(error=f"invalid_parameters:{tool_name}: {exc}")

        future = self._pool.submit(tool.run, bound)
        try:
            output = future.result(timeout=timeout)
        except FutureTimeout:
            future.cancel()
            return ToolOutcome(error=f"timeout:{tool_name} exceeded {timeout}s")
        except Exception as exc:
            logger.info(
                "tool_failed",
                extra={"extra_fields": {"tool_name": tool_name, "error": str(exc)}},
            )
            return ToolOutcome(error=str(exc) or exc.__class__.__name__)
        return ToolOutcome(output=output)

    def shutdown(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)
