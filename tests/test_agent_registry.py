"""Tests for agent registry: config loading, merging, caching, fail-fast."""

import asyncio
import os
import sys
import tempfile
from pathlib import Path
from unittest import TestCase, main

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from pydantic_ai.messages import ModelResponse, TextPart
from pydantic_ai.models.function import FunctionModel

from quote_reconciler.agents.offer_agent import build_offer_extractor
from quote_reconciler.agents.registry import AgentRegistry, default_config_path

PROJECT_CONFIG = Path(__file__).resolve().parent.parent / "config" / "agents.yaml"

MINIMAL_CONFIG = """
defaults:
  model: openai:gpt-4o-mini
  retries: 2
  temperature: 0
agents:
  offer_extractor:
    system_prompt: Extract the offer.
    user_prompt_template: "Items: {item_names}\\n{email_body}"
    retries: 3
"""


class TestAgentRegistry(TestCase):
    def _write(self, text: str) -> Path:
        f = tempfile.NamedTemporaryFile("w", suffix=".yaml", delete=False, encoding="utf-8")
        f.write(text)
        f.close()
        self.addCleanup(os.unlink, f.name)
        return Path(f.name)

    def test_fail_fast_missing_config(self):
        registry = AgentRegistry(Path("/nonexistent/agents.yaml"))
        with self.assertRaises(FileNotFoundError) as ctx:
            registry.load()
        self.assertIn("not found", str(ctx.exception).lower())

    def test_invalid_yaml(self):
        registry = AgentRegistry(self._write("agents: [unclosed"))
        with self.assertRaises(ValueError):
            registry.load()

    def test_missing_required_agent(self):
        registry = AgentRegistry(self._write("agents:\n  other:\n    system_prompt: hi\n"))
        with self.assertRaises(ValueError) as ctx:
            registry.load()
        self.assertIn("offer_extractor", str(ctx.exception))

    def test_missing_prompt_template(self):
        registry = AgentRegistry(self._write("agents:\n  offer_extractor:\n    system_prompt: hi\n"))
        with self.assertRaises(ValueError) as ctx:
            registry.load()
        self.assertIn("user_prompt_template", str(ctx.exception))

    def test_agent_config_merges_defaults(self):
        cfg = AgentRegistry(self._write(MINIMAL_CONFIG)).agent_config("offer_extractor")
        self.assertEqual(cfg["model"], "openai:gpt-4o-mini")
        self.assertEqual(cfg["retries"], 3)
        self.assertEqual(cfg["temperature"], 0)

    def test_unknown_agent_raises(self):
        with self.assertRaises(ValueError):
            AgentRegistry(self._write(MINIMAL_CONFIG)).agent_config("nope")

    def test_project_config_is_valid(self):
        registry = AgentRegistry(PROJECT_CONFIG)
        template = registry.user_prompt_template("offer_extractor")
        self.assertIn("{item_names}", template)
        self.assertIn("{email_body}", template)
        self.assertIn("hasQuote", registry.agent_config("offer_extractor")["system_prompt"])

    def test_env_var_overrides_default_path(self):
        orig = os.environ.get("AGENTS_CONFIG_PATH")
        try:
            os.environ["AGENTS_CONFIG_PATH"] = "/tmp/custom-agents.yaml"
            self.assertEqual(default_config_path(), Path("/tmp/custom-agents.yaml"))
        finally:
            if orig is not None:
                os.environ["AGENTS_CONFIG_PATH"] = orig
            else:
                os.environ.pop("AGENTS_CONFIG_PATH", None)

    def test_get_agent_with_model_override_runs(self):
        registry = AgentRegistry(self._write(MINIMAL_CONFIG))
        model = FunctionModel(lambda messages, info: ModelResponse(parts=[TextPart("ok")]))
        agent = registry.get_agent("offer_extractor", model=model)
        result = asyncio.run(agent.run("hello"))
        self.assertEqual(result.output, "ok")

    def test_reload_clears_cache(self):
        path = self._write(MINIMAL_CONFIG)
        registry = AgentRegistry(path)
        registry.load()
        path.write_text(MINIMAL_CONFIG.replace("retries: 3", "retries: 5"), encoding="utf-8")
        self.assertEqual(registry.agent_config("offer_extractor")["retries"], 3)
        registry.reload()
        self.assertEqual(registry.agent_config("offer_extractor")["retries"], 5)

    def test_extractor_without_api_key_is_unconfigured(self):
        extractor = build_offer_extractor(AgentRegistry(self._write(MINIMAL_CONFIG)), api_key="")
        self.assertFalse(extractor.configured)
        self.assertEqual(extractor.user_prompt_template, "Items: {item_names}\n{email_body}")


if __name__ == "__main__":
    main()
