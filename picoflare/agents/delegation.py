# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Delegation of sub-tasks to nested agent loops.

A subagent runs on a fresh transcript holding only the subagent system prompt
and its task. Its tool set is the caller's snapshot without the delegation
tools, with the workspace tools rebound to a sub-folder when one is given.

``subagent`` blocks the caller until the child finishes. ``spawn`` returns an
acknowledgement at once and reports the child's result later through the
completion callback.
"""

import asyncio
import logging
import threading

from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Optional
from pydantic import Field, PrivateAttr

from .agent_loop import AgentLoop, format_duration
from .sessions import Session
from ..context.assembler import ContextAssembler
from ..llm.metering import TokenLedger
from ..llm.providers.base_provider import BaseProvider
from ..tools import WORKSPACE_TOOL_NAMES, workspace_tool_definitions
from ..tools.base_tool import BaseTool, ToolContext, ToolRegistry
from ..tools.file_tools import resolve_sub_workspace
from ..types.agent_types import AgentStatus, LoopResult, SubagentTask, TaskStatus
from ..types.errors import AccessDenied, HandlerExecutionError, PicoFlareError
from ..types.llm_types import Message
from ..types.tool_types import ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

DELEGATION_TOOL_NAMES = ["subagent", "spawn"]

SUBAGENT_MAX_ITERATIONS = 20
SYNC_TIMEOUT_DEFAULT = 180.0
SYNC_TIMEOUT_MAX = 600.0
SPAWN_TIMEOUT_DEFAULT = 300.0
SUBAGENT_LIMIT_NOTE = "(Subagent reached iteration limit)"
SPAWN_RESULT_HEADER = "📋 Subagent completed:\n\n"
MAX_TASK_PREVIEW = 60

CompletionCallback = Callable[[str, str], Awaitable[None]]


def truncate_task(task: str, n: int = MAX_TASK_PREVIEW) -> str:
    return task if len(task) <= n else task[:n] + "..."


def clamp_timeout(requested: Optional[float], default: float, maximum: float) -> float:
    """A non-positive or missing request means the default; anything else is capped."""
    if requested is None or requested <= 0:
        return min(default, maximum)
    return min(float(requested), maximum)


class SubagentTracker:
    """
    Records every spawned task for status queries.

    Records are kept up to ``max_tasks``; beyond that the oldest finished
    records are evicted. Running tasks are never evicted.
    """

    def __init__(self, max_tasks: int = 200):
        self.max_tasks = max_tasks
        self._tasks: dict[str, SubagentTask] = {}
        self._next_id = 1
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def record_start(self, label: str, task: str, conversation_id: str) -> str:
        with self._lock:
            task_id = f"subagent-{self._next_id}"
            self._next_id += 1
            self._tasks[task_id] = SubagentTask(
                id=task_id,
                label=label,
                task=truncate_task(task),
                conversation_id=conversation_id,
            )
            self._evict()
            return task_id

    def record_complete(self, task_id: str, status: TaskStatus) -> bool:
        """Move a running task to its terminal status. Only the first call counts."""
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.is_finished:
                return False
            task.status = status
            task.finished_at = datetime.now()
            return True

    def get(self, task_id: str) -> SubagentTask | None:
        with self._lock:
            task = self._tasks.get(task_id)
            return task.model_copy() if task else None

    def list_tasks(self, conversation_id: Optional[str] = None) -> list[SubagentTask]:
        """All tracked tasks in start order, optionally for one conversation."""
        with self._lock:
            return [
                t.model_copy()
                for t in self._tasks.values()
                if conversation_id is None or t.conversation_id == conversation_id
            ]

    def _evict(self) -> None:
        excess = len(self._tasks) - self.max_tasks
        if excess <= 0:
            return
        finished = [tid for tid, t in self._tasks.items() if t.is_finished]
        for task_id in finished[:excess]:
            del self._tasks[task_id]


class SubagentDelegator:
    """
    Runs child agent loops for the ``subagent`` and ``spawn`` tools.

    Args:
        provider: Oracle shared with the parent
        model: Default model when the calling context carries none
        workspace: Main workspace root; sub-workspaces must stay inside it
        tracker: Optional record of spawned tasks
        on_complete: Receives ``(conversation_id, result_text)`` once per
            spawned task. Without it ``spawn`` is unavailable
        ledger: Optional usage ledger shared with the parent
        assembler: Supplies the subagent system prompt
    """

    def __init__(
        self,
        provider: BaseProvider,
        model: str,
        workspace: Path | str | None = None,
        tracker: Optional[SubagentTracker] = None,
        on_complete: Optional[CompletionCallback] = None,
        ledger: Optional[TokenLedger] = None,
        assembler: Optional[ContextAssembler] = None,
        max_iterations: int = SUBAGENT_MAX_ITERATIONS,
        sync_timeout_default: float = SYNC_TIMEOUT_DEFAULT,
        sync_timeout_max: float = SYNC_TIMEOUT_MAX,
        spawn_timeout_default: float = SPAWN_TIMEOUT_DEFAULT,
    ):
        self.provider = provider
        self.model = model
        self.workspace = Path(workspace) if workspace else None
        self.tracker = tracker
        self.on_complete = on_complete
        self.ledger = ledger
        self.assembler = assembler or ContextAssembler()
        self.max_iterations = max_iterations
        self.sync_timeout_default = sync_timeout_default
        self.sync_timeout_max = sync_timeout_max
        self.spawn_timeout_default = spawn_timeout_default
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def child_registry(self, parent: ToolRegistry, workspace: Optional[str] = None) -> ToolRegistry:
        """
        Derive a child's tool set from the caller's snapshot.

        Raises:
            WorkspaceEscape: ``workspace`` leaves the main workspace
            AccessDenied: a sub-workspace was requested but no main workspace is configured
        """
        if not workspace:
            return parent.exclude(DELEGATION_TOOL_NAMES)

        if self.workspace is None:
            raise AccessDenied("main workspace not configured")
        root = resolve_sub_workspace(self.workspace, workspace)
        return parent.exclude(DELEGATION_TOOL_NAMES + WORKSPACE_TOOL_NAMES).extend(
            workspace_tool_definitions(root)
        )

    async def _run_child(
        self,
        context: ToolContext,
        registry: ToolRegistry,
        task: str,
        workspace: Optional[str],
        timeout: float,
        name: str,
    ) -> LoopResult:
        session = Session(name, self.assembler.build_subagent_prompt(workspace))
        await session.append(Message.user(task))

        model = context.model or self.model
        loop = AgentLoop(
            provider=self.provider,
            registry=registry,
            model=model,
            max_iterations=self.max_iterations,
            timeout=timeout,
            ledger=self.ledger,
            name=name,
            limit_note=SUBAGENT_LIMIT_NOTE,
        )
        child_context = ToolContext(
            conversation_id=context.conversation_id,
            model=model,
            depth=context.depth + 1,
            registry=registry,
        )
        logger.info(f"Starting {name} (timeout {format_duration(timeout)}, workspace {workspace or '.'})")
        result = await loop.run(session, child_context)
        logger.info(f"{name} finished with status {result.status.value} after {result.metrics.iterations} iterations")
        return result

    @staticmethod
    def _child_reply(result: LoopResult) -> str:
        """The child's answer, or raise for a run that produced none."""
        if result.status in (AgentStatus.ERROR, AgentStatus.TIMEOUT):
            raise HandlerExecutionError(f"subagent failed: {result.reply.removeprefix('Error: ')}")
        if result.status == AgentStatus.ITERATION_LIMIT and result.reply != SUBAGENT_LIMIT_NOTE:
            return f"{result.reply.strip()}\n\n{SUBAGENT_LIMIT_NOTE}"
        return result.reply.strip()

    async def delegate(
        self,
        context: ToolContext,
        task: str,
        label: str = "",
        workspace: str = "",
        timeout: Optional[float] = None,
    ) -> str:
        """Run a child loop to completion and return its answer as tool-result text."""
        workspace = (workspace or "").strip()
        registry = self.child_registry(context.registry or ToolRegistry(), workspace)
        timeout = clamp_timeout(timeout, self.sync_timeout_default, self.sync_timeout_max)

        result = await self._run_child(
            context, registry, task, workspace, timeout, name=f"subagent[{label}]" if label else "subagent"
        )
        reply = self._child_reply(result)
        if label:
            return f"Subagent {label!r} completed:\n{reply}"
        return f"Subagent completed:\n{reply}"

    async def spawn(
        self,
        context: ToolContext,
        task: str,
        label: str = "",
        workspace: str = "",
        timeout: Optional[float] = None,
    ) -> str:
        """Start a detached child loop and return an acknowledgement at once."""
        if self.on_complete is None:
            raise HandlerExecutionError("spawn is not available without a completion callback")
        if context.conversation_id is None:
            raise HandlerExecutionError("spawn requires chat context (use subagent for sync delegation)")

        workspace = (workspace or "").strip()
        registry = self.child_registry(context.registry or ToolRegistry(), workspace)
        timeout = clamp_timeout(timeout, self.spawn_timeout_default, self.sync_timeout_max)

        task_id = None
        if self.tracker is not None:
            task_id = self.tracker.record_start(label, task, context.conversation_id)

        background = asyncio.create_task(
            self._run_spawned(context, registry, task, label, workspace, timeout, task_id),
            name=task_id or "spawned-subagent",
        )
        self._tasks.add(background)
        background.add_done_callback(self._tasks.discard)

        if label:
            return f"Spawned subagent {label!r} for task. Will report when done."
        return "Spawned subagent. Will report when done."

    async def _run_spawned(
        self,
        context: ToolContext,
        registry: ToolRegistry,
        task: str,
        label: str,
        workspace: str,
        timeout: float,
        task_id: Optional[str],
    ) -> None:
        name = task_id or "spawned-subagent"
        try:
            result = await self._run_child(context, registry, task, workspace, timeout, name=name)
            text = self._child_reply(result)
            status = TaskStatus.COMPLETED
        except asyncio.CancelledError:
            if task_id is not None:
                self.tracker.record_complete(task_id, TaskStatus.FAILED)
            logger.warning(f"{name} was cancelled")
            raise
        except Exception as e:
            logger.warning(f"{name} failed: {e}")
            text = f"Error: {e}"
            status = TaskStatus.FAILED

        if task_id is not None:
            self.tracker.record_complete(task_id, status)
        if label:
            text = f"**{label}**\n\n{text}"
        try:
            await self.on_complete(context.conversation_id, SPAWN_RESULT_HEADER + text)
        except Exception:
            logger.exception(f"Completion callback for {name} failed")

    async def join(self) -> None:
        """Wait for every spawned task, including ones started while waiting."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class DelegationTool(BaseTool):
    task: str = Field(..., description="The task for the subagent to complete", min_length=1)
    label: str = Field(default="", description="Optional short label for the task (for display)")

    _delegator: SubagentDelegator | None = PrivateAttr(default=None)


class SubagentTool(DelegationTool):
    TOOL_NAME = "subagent"
    TOOL_DESCRIPTION = """Delegate a task to a subagent and wait for its result.

Use workspace to run in a specific folder (e.g. 'frontend', 'pkg/agent'). Returns the subagent's result directly.
"""

    workspace: str = Field(
        default="",
        description="Optional sub-folder to work in (relative to the workspace root, e.g. 'frontend'). Paths in read_file/write_file are relative to this.",
    )
    timeout: float = Field(
        default=0,
        description="Optional timeout in seconds (default: 180, max: 600). Increase for long tasks like multi-file code analysis.",
    )

    async def run(self) -> ToolResult:
        try:
            output = await self._delegator.delegate(
                self._context, self.task, self.label, self.workspace, self.timeout
            )
        except PicoFlareError as e:
            return ToolResult(tool_name=self.TOOL_NAME, success=False, errors=str(e))
        return ToolResult(tool_name=self.TOOL_NAME, success=True, output=output)


class SpawnTool(DelegationTool):
    TOOL_NAME = "spawn"
    TOOL_DESCRIPTION = """Spawn a subagent to handle a task in the background.

Use workspace to run in a specific folder. The subagent reports back when done; you can continue with other work while it runs.
"""

    workspace: str = Field(
        default="",
        description="Optional sub-folder to work in (e.g. 'frontend', 'workers/fib3d'). Paths are relative to this.",
    )
    timeout: float = Field(
        default=0,
        description="Optional timeout in seconds (default: 300, max: 600). Increase for long background tasks.",
    )

    async def run(self) -> ToolResult:
        try:
            output = await self._delegator.spawn(
                self._context, self.task, self.label, self.workspace, self.timeout
            )
        except PicoFlareError as e:
            return ToolResult(tool_name=self.TOOL_NAME, success=False, errors=str(e))
        return ToolResult(tool_name=self.TOOL_NAME, success=True, output=output)
