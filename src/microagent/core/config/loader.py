"""Settings loader: YAML file first, then ``MICROAGENT_*`` environment overrides."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml

from .settings import AgentSettings

# env var -> (section, field)
_ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "MICROAGENT_REASONING_ENGINE": ("reasoning", "engine"),
    "MICROAGENT_MIN_CONFIDENCE": ("reasoning", "min_confidence"),
    "MICROAGENT_PARALLEL_ENABLED": ("planning", "parallel_enabled"),
    "MICROAGENT_MAX_WORKERS": ("execution", "max_workers"),
    "MICROAGENT_TOOL_TIMEOUT_S": ("execution", "tool_timeout_s"),
    "MICROAGENT_PLAN_TIMEOUT_S": ("execution", "plan_timeout_s"),
    "MICROAGENT_MERGE_POLICY": ("execution", "merge_policy"),
    "MICROAGENT_STATE_DIR": ("memory", "state_dir"),
    "MICROAGENT_MEMORY_TIMEOUT_S": ("memory", "retrieval_timeout_s"),
    "MICROAGENT_LLM_PROVIDER": ("llm", "provider"),
    "MICROAGENT_LLM_URL": ("llm", "url"),
    "MICROAGENT_LLM_MODEL": ("llm", "model"),
    "MICROAGENT_LLM_TIMEOUT_S": ("llm", "timeout_s"),
    "MICROAGENT_BREAKERS_ENABLED": ("breakers", "enabled"),
    "MICROAGENT_BREAKER_FAILURE_THRESHOLD": ("breakers", "failure_threshold"),
    "MICROAGENT_REQUEST_TIMEOUT_S": ("orchestrator", "request_timeout_s"),
    "MICROAGENT_LOG_LEVEL": ("logging", "level"),
    "MICROAGENT_LOG_TO_FILE": ("logging", "to_file"),
}


def _read_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"settings file {path} must contain a mapping")
    return data


def _coerce(raw: str) -> Any:
    lowered = raw.strip().casefold()
    if lowered in {"on", "true", "yes"}:
        return True
    if lowered in {"off", "false", "no"}:
        return False
    return raw.strip()


def _apply_env(data: dict[str, Any]) -> dict[str, Any]:
    for env_name, (section, field) in _ENV_OVERRIDES.items():
        raw = os.getenv(env_name)
        if raw is None or not raw.strip():
            continue
        candidate = {**data, section: {**(data.get(section) or {}), field: _coerce(raw)}}
        try:
            AgentSettings.model_validate(candidate)
        except ValueError:
            # malformed override: keep whatever the file or defaults say
            continue
        data = candidate
    return data


def load_settings(path: str | Path | None = None) -> AgentSettings:
    configured = path or os.getenv("MICROAGENT_CONFIG")
    data: dict[str, Any] = {}
    if configured:
        data = _read_yaml(Path(configured).expanduser())
    return AgentSettings.model_validate(_apply_env(data))


def default_state_dir(settings: AgentSettings) -> Path:
    if settings.memory.state_dir:
        return Path(settings.memory.state_dir).expanduser()
    return Path.home() / ".microagent"
