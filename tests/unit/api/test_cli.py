"""
Tests for the workforce CLI.
"""

import textwrap

import pytest
from typer.testing import CliRunner

from workforce.api.cli.main import app

LLM_CONFIG = """
default_model: main
models:
  main: gpt-4.1
"""

PROFILE = """
actors:
  - id: ceo
    name: Alice
    role: CEO
    tier: c_level
  - id: dev1
    name: Dan
    role: Developer
persistence:
  work_dir: {work_dir}
  flush_interval: 0
llm:
  config_path: {llm_config}
"""


@pytest.fixture
def config_dir(tmp_path):
    configs = tmp_path / "configs"
    configs.mkdir()
    llm_config = configs / "llm_config.yaml"
    llm_config.write_text(LLM_CONFIG, encoding="utf-8")
    profile = textwrap.dedent(PROFILE).format(work_dir=tmp_path / "wf", llm_config=llm_config)
    (configs / "test.yaml").write_text(profile, encoding="utf-8")
    return configs


class TestCLI:
    """Test the CLI application."""

    def setup_method(self):
        self.runner = CliRunner()

    def test_help(self):
        result = self.runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "actor orchestration" in result.stdout

    def test_version(self):
        result = self.runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.stdout

    def test_suspend_persists_between_runs(self, config_dir):
        base = ["--config-dir", str(config_dir), "--profile", "test"]

        suspended = self.runner.invoke(app, [*base, "actors", "suspend", "dev1"])
        listing = self.runner.invoke(app, [*base, "actors", "list"])

        assert suspended.exit_code == 0
        assert "dev1: suspend done" in suspended.stdout
        assert listing.exit_code == 0
        assert "suspended" in listing.stdout

    def test_unknown_actor_exits_with_error(self, config_dir):
        result = self.runner.invoke(
            app, ["--config-dir", str(config_dir), "--profile", "test", "actors", "suspend", "ghost"]
        )

        assert result.exit_code == 1
        assert "Unknown actor: ghost" in result.stdout
