"""Agent registry: loads config from YAML, creates and caches Pydantic AI agents."""

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic_ai import Agent

from quote_reconciler.config import AGENTS_CONFIG_PATH
from quote_reconciler.utils.logger import get_logger

logger = get_logger("quote_reconciler.agents.registry")

REQUIRED_AGENTS = ("offer_extractor",)


def default_config_path() -> Path:
    raw = os.environ.get("AGENTS_CONFIG_PATH", "").strip()
    if raw:
        return Path(raw)
    return AGENTS_CONFIG_PATH


class AgentRegistry:
    """Reads ``config/agents.yaml`` once and hands out configured agents."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else default_config_path()
        self._config: dict[str, Any] | None = None
        self._agent_cache: dict[str, Agent] = {}

    def load(self) -> dict[str, Any]:
        if self._config is not None:
            return self._config
        path = self.path
        if not path.exists():
            raise FileNotFoundError(
                f"Agents config not found: {path}. Set AGENTS_CONFIG_PATH or create config/agents.yaml."
            )
        try:
            config = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in agents config {path}: {e}") from e
        if not isinstance(config, dict):
            raise ValueError(f"Agents config must be a YAML object (dict), got {type(config)}")
        _validate_config(config)
        self._config = config
        logger.info(
            "agent_registry.config_loaded",
            path=str(path),
            agent_count=len(config.get("agents", {})),
        )
        return config

    def reload(self) -> dict[str, Any]:
        """Force-reload config from disk and clear the agent cache."""
        self._config = None
        self._agent_cache.clear()
        return self.load()

    def agent_config(self, agent_id: str) -> dict[str, Any]:
        """Return merged config (defaults + per-agent overrides) for an agent."""
        config = self.load()
        defaults = config.get("defaults") or {}
        agent_cfg = (config.get("agents") or {}).get(agent_id)
        if agent_cfg is None:
            raise ValueError(f"Unknown agent {agent_id!r}. Known: {list((config.get('agents') or {}))}")
        return {**defaults, **agent_cfg}

    def user_prompt_template(self, agent_id: str) -> str | None:
        template = self.agent_config(agent_id).get("user_prompt_template")
        if template is None or (isinstance(template, str) and not template.strip()):
            return None
        return template if isinstance(template, str) else str(template)

    def get_agent(self, agent_id: str, model: Any = None) -> Agent:
        """Get or create a text-output Agent for agent_id. ``model`` overrides the configured one."""
        if model is None and agent_id in self._agent_cache:
            return self._agent_cache[agent_id]
        cfg = self.agent_config(agent_id)
        model_settings = {}
        if cfg.get("temperature") is not None:
            model_settings["temperature"] = cfg["temperature"]
        if cfg.get("max_tokens") is not None:
            model_settings["max_tokens"] = cfg["max_tokens"]
        agent = Agent(
            model=model if model is not None else cfg.get("model", "openai:gpt-4o-mini"),
            output_type=str,
            system_prompt=cfg["system_prompt"],
            retries=cfg.get("retries", 1),
            **({"model_settings": model_settings} if model_settings else {}),
        )
        if model is None:
            self._agent_cache[agent_id] = agent
        return agent


def _validate_config(config: dict[str, Any]) -> None:
    """Every required agent must exist with a system prompt and a user prompt template."""
    agents = config.get("agents") or {}
    if not isinstance(agents, dict):
        raise ValueError("Agents config key 'agents' must be a dict")
    for agent_id in REQUIRED_AGENTS:
        agent_cfg = agents.get(agent_id)
        if not isinstance(agent_cfg, dict):
            raise ValueError(f"Agents config missing required agent {agent_id!r}")
        for key in ("system_prompt", "user_prompt_template"):
            value = agent_cfg.get(key)
            if not value or not isinstance(value, str):
                raise ValueError(f"Agent {agent_id!r} must have a non-empty {key} string")
