# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import os
import logging

from datetime import datetime
from typing import Literal
from pydantic import BaseModel, Field

from ..storage.blob_store import BlobStore

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

GOALS_KEY = "memory/meta/goals.json"
REFLECTIONS_KEY = "memory/meta/reflections.jsonl"

GoalStatus = Literal["active", "completed", "blocked", "abandoned"]


class Goal(BaseModel):
    id: str = Field(default_factory=lambda: f"goal-{os.urandom(4).hex()}")
    description: str
    status: GoalStatus = "active"
    priority: int = Field(default=3, ge=1, le=5)  # 1 is highest
    progress: str = ""
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class Reflection(BaseModel):
    timestamp: datetime = Field(default_factory=datetime.now)
    observation: str
    assessment: str
    improvement: str


class MetaCognition:
    """The agent's goals and self-reflections."""

    def __init__(self, store: BlobStore):
        self.store = store

    def load_goals(self) -> list[Goal]:
        return [Goal.model_validate(g) for g in self.store.get_json(GOALS_KEY, default=[]) or []]

    def save_goal(self, goal: Goal) -> Goal:
        goals = self.load_goals()
        goal.updated_at = datetime.now()
        for i, existing in enumerate(goals):
            if existing.id == goal.id:
                goal.created_at = existing.created_at
                goals[i] = goal
                break
        else:
            goals.append(goal)
        self.store.put_json(GOALS_KEY, [g.model_dump(mode="json") for g in goals])
        return goal

    def save_reflection(self, reflection: Reflection) -> Reflection:
        self.store.append_jsonl(REFLECTIONS_KEY, reflection.model_dump(mode="json"))
        return reflection

    def load_recent_reflections(self, max_count: int = 3) -> list[Reflection]:
        """Most recent first."""
        records = self.store.read_jsonl(REFLECTIONS_KEY)
        return [Reflection.model_validate(r) for r in reversed(records[-max_count:])]

    def build_meta_context(self) -> str:
        parts = []

        active = [g for g in self.load_goals() if g.status == "active"]
        if active:
            lines = ["### Active Goals"]
            for g in sorted(active, key=lambda g: g.priority):
                line = f"- [P{g.priority}] {g.description}"
                if g.progress:
                    line += f" ({g.progress})"
                lines.append(line)
            parts.append("\n".join(lines) + "\n")

        reflections = self.load_recent_reflections(3)
        if reflections:
            lines = ["### Recent Self-Reflections"]
            for r in reflections:
                lines.append(
                    f"- {r.timestamp:%b} {r.timestamp.day}: {r.observation} -> {r.improvement}"
                )
            parts.append("\n".join(lines) + "\n")

        return "\n".join(parts)
