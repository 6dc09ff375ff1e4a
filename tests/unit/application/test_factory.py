"""
Unit tests for WorkforceFactory.

Tests verify:
- Profile loading and the missing-profile error
- Wiring of roster, tools and orchestration settings
- End-to-end message through the wired services
- State survives shutdown and reload
"""

import textwrap

import pytest

from workforce.application.factory import WorkforceFactory

PROFILE = """
actors:
  - id: ceo
    name: Alice
    role: CEO
    tier: c_level
  - id: dev1
    name: Dan
    role: Developer
    reports_to: ceo

orchestration:
  max_depth: 3
  max_iterations: 7
  privileged_max_iterations: 20
  max_rework_rounds: 2

persistence:
  flush_interval: 0
"""


@pytest.fixture
def config_dir(tmp_path):
    configs = tmp_path / "configs"
    configs.mkdir()
    (configs / "test.yaml").write_text(textwrap.dedent(PROFILE), encoding="utf-8")
    return configs


class TestLoadProfile:
    def test_missing_profile(self, tmp_path):
        factory = WorkforceFactory(config_dir=str(tmp_path))

        with pytest.raises(FileNotFoundError, match="Profile not found"):
            factory._load_profile("missing")

    def test_load_profile(self, config_dir):
        config = WorkforceFactory(config_dir=str(config_dir))._load_profile("test")

        assert [a["id"] for a in config["actors"]] == ["ceo", "dev1"]
        assert config["orchestration"]["max_depth"] == 3


class TestCreateWorkforce:
    @pytest.mark.asyncio
    async def test_wiring(self, config_dir, tmp_path, make_llm):
        factory = WorkforceFactory(config_dir=str(config_dir))

        workforce = await factory.create_workforce(
            profile="test", work_dir=str(tmp_path / "wf"), llm_provider=make_llm()
        )

        assert workforce.roster.boss_of("dev1") == "ceo"
        assert workforce.guard.max_depth == 3
        assert workforce.loop_runner.max_iterations == 7
        assert workforce.loop_runner.privileged_max_iterations == 20
        assert workforce.delegation.max_rework_rounds == 2
        assert workforce.loop_runner.budgeter.pager is workforce.communication
        assert {"send_to_agent", "delegate_task", "read_file"} <= set(workforce.tool_executor.tools)
        await workforce.shutdown()

    @pytest.mark.asyncio
    async def test_message_round_trip_and_reload(self, config_dir, tmp_path, make_llm):
        factory = WorkforceFactory(config_dir=str(config_dir))
        work_dir = str(tmp_path / "wf")

        workforce = await factory.create_workforce(
            profile="test", work_dir=work_dir, llm_provider=make_llm(["All good."])
        )
        result = await workforce.communication.send_message("system", "ceo", "Status?")
        await workforce.shutdown()

        assert result["response"] == "All good."
        assert (tmp_path / "wf" / "state" / "messages.json").exists()

        restored = await factory.create_workforce(profile="test", work_dir=work_dir, llm_provider=make_llm())
        assert restored.communication.messages[0].response == "All good."
        assert restored.usage.get_usage("ceo")["calls"] == 1
        await restored.shutdown()
