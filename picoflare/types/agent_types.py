# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
from enum import Enum
from typing import Optional
from datetime import datetime
from pydantic import BaseModel, Field

from .llm_types import TokenUsage


class AgentStatus(str, Enum):
    """Possible outcomes of an agent loop run."""

    SUCCESS = "success"  # the oracle produced a final answer
    ERROR = "error"  # oracle transport failure
    ITERATION_LIMIT = "iteration_limit"
    TIMEOUT = "timeout"


class AgentMetrics(BaseModel):
    """Metrics about the loop execution."""

    start_time: datetime
    end_time: Optional[datetime] = None
    token_usage: TokenUsage = Field(default_factory=TokenUsage)
    iterations: int = 0
    tool_calls: int = 0

    @property
    def duration_seconds(self) -> Optional[float]:
        """Calculate execution duration if completed."""
        if self.end_time:
            return (self.end_time - self.start_time).total_seconds()
        return None


class LoopResult(BaseModel):
    """
    The result of one agent loop run.

    ``reply`` is always a non-empty, user-readable string; ``status`` tells a
    caller whether it is an answer, an error report, an iteration-limit note or
    a timeout note.
    """

    status: AgentStatus
    reply: str
    metrics: AgentMetrics
    tools_used: list[str] = Field(default_factory=list)
    errors: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == AgentStatus.SUCCESS


class TaskStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SubagentTask(BaseModel):
    """Tracking record for an asynchronous delegation."""

    id: str
    label: str = ""
    task: str  # truncated description
    conversation_id: str
    status: TaskStatus = TaskStatus.RUNNING
    created_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def is_finished(self) -> bool:
        return self.status != TaskStatus.RUNNING

    def __str__(self) -> str:
        name = self.label or self.task
        line = f"{self.id} [{self.status.value}] {name}"
        if self.finished_at:
            elapsed = (self.finished_at - self.created_at).total_seconds()
            line += f" ({elapsed:.0f}s)"
        return line
