# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
The main entrypoint to the system.

``Agent`` owns the session table, the active tool snapshot and the optional
collaborators, and exposes the two host-facing entry points:
``process_message(conversation_id, text)`` and the completion callback handed
in for spawned subagents.
"""

import asyncio
import logging

from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .config import Settings
from .agents.agent_loop import AgentLoop
from .agents.delegation import CompletionCallback, SpawnTool, SubagentDelegator, SubagentTool, SubagentTracker
from .agents.sessions import SessionStore
from .cognition.evolution import ExtensionRegistry
from .cognition.memory import Memory
from .cognition.metacognition import MetaCognition
from .context.assembler import ContextAssembler
from .context.skills import SkillsLoader
from .llm.metering import TokenLedger
from .llm.providers import BaseProvider, OpenRouterProvider
from .storage.blob_store import BlobStore
from .tools import toolkits, workspace_tool_definitions
from .tools.base_tool import ToolContext, ToolDefinition, ToolRegistry
from .tools.cloud_api import CloudApi
from .tools.extension_tools import dynamic_tool_definitions
from .tools.http_request import HttpRequest
from .tools.memory_tools import Tokenomics
from .tools.skill_tools import CreateSkill
from .types.agent_types import AgentStatus, LoopResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

# Tools whose use changes the dynamic tool set
CATALOG_CHANGING_TOOLS = {"create_tool", "remove_tool"}


class Agent:
    """
    Args:
        provider: The oracle
        settings: Model, workspace, credentials and loop limits
        memory: Long-term memory, namespaced per conversation
        meta: Goals and reflections
        extensions: Self-registered tools and prompt patches
        ledger: Token usage ledger
        on_subagent_complete: Receives spawned subagent results. ``spawn``
            is only offered when this is set
        clock: Time source for the system prompt
    """

    def __init__(
        self,
        provider: BaseProvider,
        settings: Optional[Settings] = None,
        memory: Optional[Memory] = None,
        meta: Optional[MetaCognition] = None,
        extensions: Optional[ExtensionRegistry] = None,
        ledger: Optional[TokenLedger] = None,
        on_subagent_complete: Optional[CompletionCallback] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings or Settings()
        self.provider = provider
        self.model = self.settings.model
        self.workspace: Optional[Path] = (
            Path(self.settings.workspace).resolve() if self.settings.workspace else None
        )
        self.memory = memory
        self.meta = meta
        self.extensions = extensions
        self.ledger = ledger

        self.sessions = SessionStore(
            max_messages=self.settings.max_session_messages,
            refresh_interval=self.settings.refresh_interval,
        )
        self.assembler = ContextAssembler(
            memory=memory,
            meta=meta,
            extensions=extensions,
            ledger=ledger,
            skills=SkillsLoader(self.workspace) if self.workspace else None,
            clock=clock,
        )
        self.tracker = SubagentTracker(max_tasks=self.settings.tracker_max_tasks)
        self.delegator = SubagentDelegator(
            provider=provider,
            model=self.model,
            workspace=self.workspace,
            tracker=self.tracker,
            on_complete=on_subagent_complete,
            ledger=ledger,
            assembler=self.assembler,
            max_iterations=self.settings.subagent_max_iterations,
            sync_timeout_default=self.settings.subagent_timeout_default,
            sync_timeout_max=self.settings.subagent_timeout_max,
            spawn_timeout_default=self.settings.spawn_timeout_default,
        )

        self._static_tools = self._build_static_tools()
        self._registry = self._build_registry()
        self._registry_lock = asyncio.Lock()
        self._background: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        provider: Optional[BaseProvider] = None,
        on_subagent_complete: Optional[CompletionCallback] = None,
    ) -> "Agent":
        """Wire the agent with disk-backed collaborators under ``settings.data_dir``."""
        if provider is None:
            if not settings.openrouter_api_key:
                raise ValueError("OPENROUTER_API_KEY is not set")
            provider = OpenRouterProvider(api_key=settings.openrouter_api_key, base_url=settings.base_url)

        store = BlobStore(settings.data_dir)
        ledger = TokenLedger(store)
        ledger.load_lifetime()
        return cls(
            provider=provider,
            settings=settings,
            memory=Memory(store),
            meta=MetaCognition(store),
            extensions=ExtensionRegistry(store),
            ledger=ledger,
            on_subagent_complete=on_subagent_complete,
        )

    @property
    def registry(self) -> ToolRegistry:
        """The active tool snapshot."""
        return self._registry

    def _build_static_tools(self) -> list[ToolDefinition]:
        tools: list[ToolDefinition] = []
        if self.workspace is not None:
            tools.extend(workspace_tool_definitions(self.workspace))
            tools.append(CreateSkill.definition(workspace=self.workspace))

        tools.append(HttpRequest.definition())
        if self.settings.has_cloudflare:
            tools.append(
                CloudApi.definition(
                    account_id=self.settings.cloudflare_account_id,
                    api_token=self.settings.cloudflare_api_token,
                )
            )

        if self.memory is not None:
            tools.extend(tool.definition(memory=self.memory) for tool in toolkits["memory"])
        if self.meta is not None:
            tools.extend(tool.definition(meta=self.meta) for tool in toolkits["meta"])
        if self.ledger is not None:
            tools.append(Tokenomics.definition(ledger=self.ledger))
        if self.extensions is not None:
            tools.extend(tool.definition(extensions=self.extensions) for tool in toolkits["extensions"])

        tools.append(SubagentTool.definition(delegator=self.delegator))
        if self.delegator.on_complete is not None:
            tools.append(SpawnTool.definition(delegator=self.delegator))
        return tools

    def _build_registry(self) -> ToolRegistry:
        registry = ToolRegistry(self._static_tools)
        if self.extensions is not None:
            for definition in dynamic_tool_definitions(self.extensions):
                if definition.name in registry:
                    logger.warning(f"Skipping dynamic tool {definition.name}: name already in use")
                    continue
                registry.add(definition)
        return registry

    async def refresh_tools(self) -> ToolRegistry:
        """Rebuild the snapshot with the current dynamic tools and make it active."""
        registry = await asyncio.to_thread(self._build_registry)
        async with self._registry_lock:
            self._registry = registry
        logger.info(
            f"Tools refreshed: {len(self._static_tools)} static + "
            f"{len(registry) - len(self._static_tools)} dynamic = {len(registry)} total"
        )
        return registry

    def _prompt_builder(self, registry: ToolRegistry, conversation_id: str) -> Callable[[], str]:
        agent_id = ToolContext(conversation_id=conversation_id).agent_id
        return lambda: self.assembler.build(registry, agent_id)

    async def refresh_session(self, conversation_id: str) -> bool:
        """Regenerate a conversation's system prompt. False if there is no such session."""
        session = self.sessions.get(conversation_id)
        if session is None:
            return False
        prompt = self._prompt_builder(self._registry, conversation_id)()
        await session.replace_system_prompt(prompt)
        return True

    async def set_model(self, conversation_id: str, model: str) -> None:
        """Override the model for one conversation; an empty value resets it."""
        session = await self.sessions.get_or_create(
            conversation_id, self._prompt_builder(self._registry, conversation_id)
        )
        session.model_override = model.strip() or None

    def get_model(self, conversation_id: str) -> str:
        session = self.sessions.get(conversation_id)
        if session is not None and session.model_override:
            return session.model_override
        return self.model

    async def process_message(self, conversation_id: str, text: str) -> str:
        """Run one turn for ``conversation_id`` and return the reply text."""
        if self.ledger is not None:
            self.ledger.record_message()

        registry = self._registry
        build_prompt = self._prompt_builder(registry, conversation_id)
        session = await self.sessions.get_or_create(conversation_id, build_prompt)

        async with session.turn_lock:
            await self.sessions.begin_turn(session, text, build_prompt)
            context = ToolContext(
                conversation_id=conversation_id,
                model=self.get_model(conversation_id),
                registry=registry,
            )
            loop = AgentLoop(
                provider=self.provider,
                registry=registry,
                model=self.model,
                max_iterations=self.settings.max_iterations,
                timeout=self.settings.agent_timeout,
                ledger=self.ledger,
                name=f"chat-{conversation_id}",
            )
            try:
                result = await loop.run(session, context)
            except Exception as e:
                logger.exception(f"Turn for {conversation_id} failed")
                return f"Error: {e}"
            finally:
                await self.sessions.trim(session)

        self._after_turn(context.agent_id, text, result)
        if CATALOG_CHANGING_TOOLS.intersection(result.tools_used):
            await self.refresh_tools()
        return result.reply

    def _after_turn(self, agent_id: str, text: str, result: LoopResult) -> None:
        if result.status not in (AgentStatus.SUCCESS, AgentStatus.ITERATION_LIMIT):
            return
        if self.memory is not None:
            self._detach(
                asyncio.to_thread(
                    self.memory.for_agent(agent_id).extract_and_learn,
                    text,
                    result.reply,
                    list(dict.fromkeys(result.tools_used)),
                ),
                "extract_and_learn",
            )
        if self.ledger is not None:
            self._detach(asyncio.to_thread(self.ledger.save_lifetime), "save_lifetime")

    def _detach(self, coro, name: str) -> None:
        task = asyncio.create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background_done)

    def _background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Background task {task.get_name()} failed: {exc}")

    async def wait_for_background(self) -> None:
        """Wait for detached persistence work and spawned subagents."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
        await self.delegator.join()

    def status(self, conversation_id: Optional[str] = None) -> str:
        """Tracked subagent tasks as display text."""
        tasks = self.tracker.list_tasks(conversation_id)
        if not tasks:
            return "No subagent tasks."
        return "\n".join(str(t) for t in tasks)
