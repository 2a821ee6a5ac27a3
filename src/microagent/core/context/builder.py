from __future__ import annotations

import logging

from microagent.core.integrations.base import ProfileProvider
from microagent.core.orchestration.schemas import AgentRequest
from microagent.core.tools.registry import ToolRegistry

from .deadline import Deadline
from .schemas import DEFAULT_PERMISSIONS, AgentContext, UserProfile
from .state import ContextState

logger = logging.getLogger("microagent.context")


class ContextBuilder:
    def __init__(self, profile_provider: ProfileProvider | None = None, tool_registry: ToolRegistry | None = None) -> None:
        self.profile_provider = profile_provider
        self.tool_registry = tool_registry

    def build_context(self, request: AgentRequest, deadline: Deadline | None = None) -> AgentContext:
        profile = self._profile(request.user_id)

        environment = ContextState("environment", request.context)
        environment.set("message", request.message)
        environment.setdefault("session_id", request.session_id)
        environment.setdefault("request_timestamp", request.timestamp.isoformat())

        technical = ContextState("technical")
        tools = list(request.context.get("tools") or [])
        tools = [{"name": item} if isinstance(item, str) else dict(item) for item in tools]
        if self.tool_registry is not None:
            known = {tool["name"] for tool in tools if "name" in tool}
            tools.extend(item for item in self.tool_registry.descriptors() if item["name"] not in known)
        technical.set("tools", tools)
        technical.set(
            "attachments",
            [
                {"id": item.id, "filename": item.filename, "content_type": item.content_type, "size": item.size}
                for item in request.attachments
            ],
        )

        domain = ContextState("domain")
        if request.context.get("domain"):
            domain.set("label", str(request.context["domain"]))

        return AgentContext(
            conversation_id=request.conversation_id,
            user_id=request.user_id,
            user_profile=profile,
            environment=environment,
            domain=domain,
            technical=technical,
            deadline=deadline or Deadline(),
        )

    def _profile(self, user_id: str) -> UserProfile:
        if self.profile_provider is not None:
            try:
                profile = self.profile_provider.get_profile(user_id)
            except Exception as exc:
                logger.warning(
                    "profile_lookup_failed",
                    extra={"extra_fields": {"user_id": user_id, "error": str(exc)}},
                )
                profile = None
            if profile is not None:
                return profile
        return UserProfile(user_id=user_id, user_name=user_id, permissions=DEFAULT_PERMISSIONS)
