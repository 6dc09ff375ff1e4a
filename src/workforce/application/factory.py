"""
Application Layer - Workforce Factory

Dependency injection for the orchestration core. Reads a profile YAML and
wires the actor roster, mailbox dispatcher, agentic loop, delegation state
machine, communication service, tools and persistence into one Workforce.

There are no module-level singletons: every service is created here and
handed to the services that need it. Services with circular needs (tools need
the delegation machine, the loop needs the tools) are completed after
construction.

Example:
    >>> factory = WorkforceFactory(config_dir="configs")
    >>> workforce = await factory.create_workforce(profile="dev")
    >>> result = await workforce.communication.send_message("system", "ceo", "Status?")
    >>> await workforce.shutdown()
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import structlog
import yaml

from workforce.application.communication import ActorCommunicationService
from workforce.application.roster import ActorRoster
from workforce.core.domain.agentic_loop import AgenticLoopRunner
from workforce.core.domain.call_guard import MAX_NESTING_DEPTH, CallChainGuard
from workforce.core.domain.context_budget import ContextWindowBudgeter
from workforce.core.domain.delegation import DelegationStateMachine
from workforce.core.domain.dev_plans import DevPlanQueue
from workforce.core.domain.dispatcher import ActorMailboxDispatcher
from workforce.core.domain.supervisor import BackgroundTaskSupervisor
from workforce.core.interfaces.llm import LLMProviderProtocol
from workforce.infrastructure.llm.llm_service import LLMService
from workforce.infrastructure.persistence.json_store import BufferedJsonStore
from workforce.infrastructure.persistence.usage_tracker import UsageTracker
from workforce.infrastructure.tools.collaboration_tools import create_collaboration_tools
from workforce.infrastructure.tools.executor import ToolExecutor
from workforce.infrastructure.tools.file_tools import (
    ListFilesTool,
    ReadFileTool,
    Workspace,
    WriteFileTool,
)


@dataclass
class Workforce:
    """All wired services of one running workforce."""

    roster: ActorRoster
    supervisor: BackgroundTaskSupervisor
    store: BufferedJsonStore
    dispatcher: ActorMailboxDispatcher
    guard: CallChainGuard
    usage: UsageTracker
    loop_runner: AgenticLoopRunner
    dev_plans: DevPlanQueue
    delegation: DelegationStateMachine
    communication: ActorCommunicationService
    tool_executor: ToolExecutor

    async def load(self) -> None:
        """Restore persisted state."""
        await self.roster.load()
        await self.usage.load()
        await self.dev_plans.load()
        await self.delegation.load()
        await self.communication.load()

    async def shutdown(self, timeout: float = 10.0) -> None:
        """Wait for background work (cancelling leftovers), then flush the store."""
        await self.supervisor.shutdown(timeout=timeout)
        await self.store.close()


class WorkforceFactory:
    """Creates a Workforce from a configuration profile."""

    def __init__(self, config_dir: str = "configs"):
        """
        Args:
            config_dir: Path to directory containing profile YAML files
        """
        self.config_dir = Path(config_dir)
        self.logger = structlog.get_logger().bind(component="workforce_factory")

    async def create_workforce(
        self,
        profile: str = "dev",
        work_dir: Optional[str] = None,
        llm_provider: Optional[LLMProviderProtocol] = None,
        load_state: bool = True,
    ) -> Workforce:
        """
        Build and (optionally) restore a workforce.

        Args:
            profile: Profile name, resolved as ``<config_dir>/<profile>.yaml``
            work_dir: Overrides ``persistence.work_dir``
            llm_provider: Use this provider instead of creating an LLMService
            load_state: Restore persisted messages, tasks, plans and usage

        Raises:
            FileNotFoundError: If the profile (or LLM config) is missing
            pydantic.ValidationError: If an actor entry is invalid
        """
        config = self._load_profile(profile)
        if work_dir:
            config.setdefault("persistence", {})["work_dir"] = work_dir

        orchestration = config.get("orchestration", {})
        persistence = config.get("persistence", {})
        work_path = Path(persistence.get("work_dir", ".workforce"))

        self.logger.info(
            "creating_workforce",
            profile=profile,
            work_dir=str(work_path),
            actors=len(config.get("actors", [])),
        )

        supervisor = BackgroundTaskSupervisor()
        store = BufferedJsonStore(
            work_dir=str(work_path / "state"),
            flush_interval=persistence.get("flush_interval", 0.5),
            supervisor=supervisor,
        )
        roster = ActorRoster.from_config(config.get("actors", []), store=store)
        dispatcher = ActorMailboxDispatcher(supervisor=supervisor)
        guard = CallChainGuard(max_depth=orchestration.get("max_depth", MAX_NESTING_DEPTH))
        usage = UsageTracker(store=store)
        tool_executor = ToolExecutor(directory=roster)
        budgeter = ContextWindowBudgeter()

        loop_runner = AgenticLoopRunner(
            llm_provider=llm_provider or self._create_llm_provider(config),
            tool_executor=tool_executor,
            budgeter=budgeter,
            usage_sink=usage,
            max_iterations=orchestration.get("max_iterations", AgenticLoopRunner.MAX_ITERATIONS),
            privileged_max_iterations=orchestration.get(
                "privileged_max_iterations", AgenticLoopRunner.PRIVILEGED_MAX_ITERATIONS
            ),
            history_token_budget=orchestration.get("history_token_budget"),
            context_limit=orchestration.get("context_limit", 128_000),
            temperature=orchestration.get("temperature", 0.7),
        )

        cancel_on_timeout = orchestration.get("cancel_on_timeout", False)
        dev_plans = DevPlanQueue(store=store)
        communication = ActorCommunicationService(
            roster=roster,
            dispatcher=dispatcher,
            loop_runner=loop_runner,
            guard=guard,
            store=store,
            default_timeout=orchestration.get("default_timeout", 120),
            cancel_on_timeout=cancel_on_timeout,
        )
        delegation = DelegationStateMachine(
            directory=roster,
            dispatcher=dispatcher,
            loop_runner=loop_runner,
            dev_plans=dev_plans,
            supervisor=supervisor,
            messenger=communication,
            store=store,
            guard=guard,
            delegate_timeout=orchestration.get("delegate_timeout", 300),
            max_rework_rounds=orchestration.get("max_rework_rounds", 3),
            cancel_on_timeout=cancel_on_timeout,
        )
        budgeter.pager = communication

        tool_executor.register_all(create_collaboration_tools(roster, communication, delegation))
        tool_executor.register_all(self._create_file_tools(config, work_path))

        workforce = Workforce(
            roster=roster,
            supervisor=supervisor,
            store=store,
            dispatcher=dispatcher,
            guard=guard,
            usage=usage,
            loop_runner=loop_runner,
            dev_plans=dev_plans,
            delegation=delegation,
            communication=communication,
            tool_executor=tool_executor,
        )
        if load_state:
            await workforce.load()

        self.logger.info("workforce_created", profile=profile, tools=sorted(tool_executor.tools))
        return workforce

    def _load_profile(self, profile: str) -> dict:
        """
        Load configuration profile from YAML file.

        Raises:
            FileNotFoundError: If profile YAML not found
        """
        profile_path = self.config_dir / f"{profile}.yaml"

        if not profile_path.exists():
            self.logger.error(
                "profile_not_found",
                profile=profile,
                path=str(profile_path),
                hint="Ensure profile YAML exists in configs directory",
            )
            raise FileNotFoundError(f"Profile not found: {profile_path}")

        with open(profile_path, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

        self.logger.debug("profile_loaded", profile=profile, config_keys=list(config.keys()))
        return config

    def _create_llm_provider(self, config: dict) -> LLMProviderProtocol:
        llm_config = config.get("llm", {})
        config_path = llm_config.get("config_path", str(self.config_dir / "llm_config.yaml"))
        return LLMService(config_path=config_path)

    def _create_file_tools(self, config: dict, work_path: Path) -> list[Any]:
        workspace_dir = config.get("tools", {}).get("workspace_dir", str(work_path / "workspace"))
        workspace = Workspace(workspace_dir)
        return [ReadFileTool(workspace), WriteFileTool(workspace), ListFilesTool(workspace)]
