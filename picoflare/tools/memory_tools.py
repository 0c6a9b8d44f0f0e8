# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Tools over the agent's memory, goals and token ledger."""

import logging

from typing import Literal
from pydantic import Field, PrivateAttr

from .base_tool import BaseTool
from ..cognition.memory import ContextBudget, Episode, Fact, Memory, Procedure
from ..cognition.metacognition import Goal, GoalStatus, MetaCognition, Reflection
from ..llm.metering import TokenLedger
from ..types.tool_types import ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

RECALL_BUDGETS = {"small": 1000, "medium": 4000, "large": 8000}


class MemoryTool(BaseTool):
    _memory: Memory | None = PrivateAttr(default=None)

    @property
    def memory(self) -> Memory:
        if self._memory is None:
            raise RuntimeError("memory is not configured")
        return self._memory.for_agent(self._context.agent_id)


class LearnFact(MemoryTool):
    TOOL_NAME = "learn_fact"
    TOOL_DESCRIPTION = """Store a fact in semantic memory.

Use for user preferences, project details, domain knowledge: anything worth remembering permanently.
"""

    category: Literal["user", "system", "domain", "preference", "project"] = Field(
        ..., description="Category of the fact"
    )
    content: str = Field(..., description="The fact to remember", min_length=1)
    confidence: float = Field(default=0.8, description="Confidence 0.0-1.0 (default 0.8)", ge=0.0, le=1.0)

    async def run(self) -> ToolResult:
        self.memory.learn_fact(
            Fact(category=self.category, content=self.content, confidence=self.confidence)
        )
        return ToolResult(
            tool_name=self.TOOL_NAME,
            success=True,
            output=f"Learned [{self.category}]: {self.content} (confidence: {self.confidence * 100:.0f}%)",
        )


class RecallFacts(MemoryTool):
    TOOL_NAME = "recall_facts"
    TOOL_DESCRIPTION = "Retrieve facts from semantic memory, optionally filtered by category."

    category: str = Field(default="", description="Filter by category (empty = all)")

    async def run(self) -> ToolResult:
        facts = self.memory.query_facts(self.category)
        if not facts:
            return ToolResult(tool_name=self.TOOL_NAME, success=True, output="No facts stored yet.")
        lines = [f"- [{f.category}] {f.content} ({f.confidence * 100:.0f}%)" for f in facts]
        return ToolResult(tool_name=self.TOOL_NAME, success=True, output="\n".join(lines))


class SaveEpisode(MemoryTool):
    TOOL_NAME = "save_episode"
    TOOL_DESCRIPTION = "Log a notable event, insight, or experience to episodic memory."

    type: str = Field(
        ..., description="Event type: conversation, tool_use, error, insight, goal", min_length=1
    )
    summary: str = Field(..., description="Brief description of what happened", min_length=1)
    detail: str = Field(default="", description="Detailed information (optional)")

    async def run(self) -> ToolResult:
        self.memory.save_episode(Episode(type=self.type, summary=self.summary, detail=self.detail))
        return ToolResult(
            tool_name=self.TOOL_NAME,
            success=True,
            output=f"Episode logged [{self.type}]: {self.summary}",
        )


class LearnProcedure(MemoryTool):
    TOOL_NAME = "learn_procedure"
    TOOL_DESCRIPTION = """Store a reusable procedure.

Useful for remembering how to accomplish recurring tasks (e.g. 'deploy a worker').
"""

    name: str = Field(..., description="Procedure name", min_length=1)
    description: str = Field(..., description="What this procedure does")
    steps: list[str] = Field(..., description="Ordered steps")

    async def run(self) -> ToolResult:
        self.memory.save_procedure(
            Procedure(name=self.name, description=self.description, steps=self.steps)
        )
        return ToolResult(
            tool_name=self.TOOL_NAME,
            success=True,
            output=f"Procedure learned: {self.name} ({len(self.steps)} steps)",
        )


class RecallMemory(MemoryTool):
    TOOL_NAME = "recall_memory"
    TOOL_DESCRIPTION = """Read cognitive memory context: facts, recent episodes, and learned procedures.

Budget sizes: 'small' (1000 chars), 'medium' (4000), 'large' (8000).
"""

    budget: Literal["small", "medium", "large"] = Field(
        default="medium", description="How much context to return"
    )

    async def run(self) -> ToolResult:
        context = self.memory.build_context(
            ContextBudget(max_total_chars=RECALL_BUDGETS[self.budget])
        )
        return ToolResult(tool_name=self.TOOL_NAME, success=True, output=context)


class SetGoal(BaseTool):
    TOOL_NAME = "set_goal"
    TOOL_DESCRIPTION = "Set or update a goal. Use for tracking what you're working toward."

    description: str = Field(..., description="Goal description", min_length=1)
    priority: int = Field(default=3, description="Priority 1 (highest) to 5 (lowest)", ge=1, le=5)
    status: GoalStatus = Field(default="active", description="active, completed, blocked, abandoned")
    id: str | None = Field(default=None, description="Existing goal id to update (optional)")

    _meta: MetaCognition | None = PrivateAttr(default=None)

    async def run(self) -> ToolResult:
        goal = Goal(description=self.description, priority=self.priority, status=self.status)
        if self.id:
            goal.id = self.id
        self._meta.save_goal(goal)
        return ToolResult(
            tool_name=self.TOOL_NAME,
            success=True,
            output=f"Goal set [P{self.priority}]: {self.description} ({self.status})",
        )


class SelfReflect(BaseTool):
    TOOL_NAME = "self_reflect"
    TOOL_DESCRIPTION = """Record a self-reflection: what happened, how it went, what to improve.

Use after complex tasks or when you notice patterns.
"""

    observation: str = Field(..., description="What you observed")
    assessment: str = Field(..., description="How it went")
    improvement: str = Field(..., description="What to do better next time")

    _meta: MetaCognition | None = PrivateAttr(default=None)

    async def run(self) -> ToolResult:
        self._meta.save_reflection(
            Reflection(
                observation=self.observation,
                assessment=self.assessment,
                improvement=self.improvement,
            )
        )
        return ToolResult(tool_name=self.TOOL_NAME, success=True, output="Reflection saved.")


class Tokenomics(BaseTool):
    TOOL_NAME = "tokenomics"
    TOOL_DESCRIPTION = "View token usage, costs, and efficiency metrics for this session and lifetime."

    _ledger: TokenLedger | None = PrivateAttr(default=None)

    async def run(self) -> ToolResult:
        return ToolResult(tool_name=self.TOOL_NAME, success=True, output=self._ledger.report())
