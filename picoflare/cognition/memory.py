# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Long-lived agent memory.

Three layers are persisted through a ``BlobStore``:

- Episodic: timestamped experiences, one JSONL log per day
- Semantic: facts with a category and a confidence
- Procedural: reusable procedures with use counters

``build_context`` packs the most useful parts of each layer into a character
budget for the system prompt.
"""

import os
import logging

from datetime import datetime, timedelta
from typing import Optional
from pydantic import BaseModel, Field

from ..storage.blob_store import BlobStore

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

KNOWLEDGE_KEY = "memory/knowledge/facts.json"
PROCEDURES_KEY = "memory/procedures/index.json"
EMPTY_MEMORY = "(Memory is empty. I'll learn as we interact.)\n"


def _new_id(prefix: str) -> str:
    return f"{prefix}-{datetime.now().strftime('%Y%m%d%H%M%S')}-{os.urandom(3).hex()}"


def _truncate(text: str, n: int) -> str:
    return text if len(text) <= n else text[:n] + "..."


class Episode(BaseModel):
    id: str = Field(default_factory=lambda: _new_id("ep"))
    timestamp: datetime = Field(default_factory=datetime.now)
    type: str  # conversation, tool_use, error, insight, goal
    summary: str
    detail: str = ""
    tags: list[str] = Field(default_factory=list)


class Fact(BaseModel):
    id: str = Field(default_factory=lambda: _new_id("fact"))
    category: str  # user, system, domain, preference, project
    content: str
    confidence: float = 0.8
    source: str = "agent"
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class Procedure(BaseModel):
    id: str = Field(default_factory=lambda: _new_id("proc"))
    name: str
    description: str
    steps: list[str] = Field(default_factory=list)
    uses: int = 0
    last_used: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.now)


class ContextBudget(BaseModel):
    """Character budget for ``build_context`` (roughly 4 chars per token)."""

    max_total_chars: int = 6000
    semantic_pct: int = 50
    episodic_pct: int = 30
    procedural_pct: int = 20


class Memory:
    """Cognitive memory, optionally namespaced to one agent id."""

    def __init__(self, store: BlobStore, agent_id: str | None = None):
        self.store = store
        self.agent_id = agent_id

    def for_agent(self, agent_id: str | None) -> "Memory":
        """A view of the same store scoped to ``agent_id``."""
        return Memory(self.store, agent_id)

    def _key(self, key: str) -> str:
        if self.agent_id:
            return f"agents/{self.agent_id}/{key}"
        return key

    # Episodic ----------------------------------------------------------------

    def _episode_log_key(self, day: datetime) -> str:
        return self._key(f"memory/episodes/{day.strftime('%Y%m%d')}/log.jsonl")

    def save_episode(self, episode: Episode) -> Episode:
        self.store.append_jsonl(
            self._episode_log_key(episode.timestamp), episode.model_dump(mode="json")
        )
        return episode

    def load_episodes_for_date(self, day: datetime) -> list[Episode]:
        episodes = []
        for record in self.store.read_jsonl(self._episode_log_key(day)):
            try:
                episodes.append(Episode.model_validate(record))
            except ValueError:
                logger.debug(f"Skipping malformed episode record: {record}")
        return episodes

    def load_recent_episodes(self, days: int = 3, max_count: int = 20) -> list[Episode]:
        now = datetime.now()
        episodes = []
        for i in range(days):
            episodes.extend(self.load_episodes_for_date(now - timedelta(days=i)))
        episodes.sort(key=lambda e: e.timestamp, reverse=True)
        return episodes[:max_count]

    # Semantic ----------------------------------------------------------------

    def _load_facts(self) -> list[Fact]:
        data = self.store.get_json(self._key(KNOWLEDGE_KEY), default={}) or {}
        return [Fact.model_validate(f) for f in data.get("facts", [])]

    def _save_facts(self, facts: list[Fact]) -> None:
        self.store.put_json(
            self._key(KNOWLEDGE_KEY),
            {
                "facts": [f.model_dump(mode="json") for f in facts],
                "updated_at": datetime.now().isoformat(),
            },
        )

    def learn_fact(self, fact: Fact) -> Fact:
        """Add a fact, replacing one with the same id or identical category and content."""
        facts = self._load_facts()
        fact.updated_at = datetime.now()
        for i, existing in enumerate(facts):
            if existing.id == fact.id or (
                existing.category == fact.category and existing.content == fact.content
            ):
                fact.created_at = existing.created_at
                facts[i] = fact
                break
        else:
            facts.append(fact)
        self._save_facts(facts)
        return fact

    def query_facts(self, category: str = "") -> list[Fact]:
        facts = self._load_facts()
        if not category:
            return facts
        return [f for f in facts if f.category == category]

    # Procedural --------------------------------------------------------------

    def load_procedures(self) -> list[Procedure]:
        data = self.store.get_json(self._key(PROCEDURES_KEY), default=[]) or []
        return [Procedure.model_validate(p) for p in data]

    def _save_procedures(self, procedures: list[Procedure]) -> None:
        self.store.put_json(
            self._key(PROCEDURES_KEY), [p.model_dump(mode="json") for p in procedures]
        )

    def save_procedure(self, procedure: Procedure) -> Procedure:
        procedures = self.load_procedures()
        for i, existing in enumerate(procedures):
            if existing.id == procedure.id or existing.name == procedure.name:
                procedure.uses = max(procedure.uses, existing.uses)
                procedures[i] = procedure
                break
        else:
            procedures.append(procedure)
        self._save_procedures(procedures)
        return procedure

    def record_procedure_use(self, name: str) -> bool:
        procedures = self.load_procedures()
        for procedure in procedures:
            if procedure.name == name:
                procedure.uses += 1
                procedure.last_used = datetime.now()
                self._save_procedures(procedures)
                return True
        return False

    # Context -----------------------------------------------------------------

    def build_context(self, budget: ContextBudget | None = None) -> str:
        """Render facts, recent episodes and procedures within the budget."""
        budget = budget or ContextBudget()
        sections: list[str] = []
        remaining = budget.max_total_chars

        def pack(lines: list[str], limit: int) -> list[str]:
            packed, count = [], 0
            for line in lines:
                if count + len(line) > limit:
                    break
                packed.append(line)
                count += len(line)
            return packed

        facts = sorted(self.query_facts(), key=lambda f: f.confidence, reverse=True)
        fact_lines = pack(
            [f"- [{f.category}] {f.content} (confidence: {f.confidence * 100:.0f}%)" for f in facts],
            budget.max_total_chars * budget.semantic_pct // 100,
        )
        if fact_lines:
            section = "### Known Facts\n" + "\n".join(fact_lines)
            sections.append(section)
            remaining -= len(section)

        episode_lines = pack(
            [
                f"- {e.timestamp:%b} {e.timestamp.day} {e.timestamp:%H:%M} [{e.type}] {e.summary}"
                for e in self.load_recent_episodes(days=3, max_count=20)
            ],
            min(budget.max_total_chars * budget.episodic_pct // 100, remaining),
        )
        if episode_lines:
            section = "### Recent Activity\n" + "\n".join(episode_lines)
            sections.append(section)
            remaining -= len(section)

        procedures = sorted(self.load_procedures(), key=lambda p: p.uses, reverse=True)
        procedure_lines = pack(
            [f"- **{p.name}**: {p.description} (used {p.uses}x)" for p in procedures],
            min(budget.max_total_chars * budget.procedural_pct // 100, remaining),
        )
        if procedure_lines:
            sections.append("### Learned Procedures\n" + "\n".join(procedure_lines))

        if not sections:
            return EMPTY_MEMORY
        return "\n\n".join(sections) + "\n"

    # Background learning -----------------------------------------------------

    def extract_and_learn(self, user_message: str, reply: str, tools_used: list[str]) -> Episode:
        """Log a finished turn as an episode."""
        episode = Episode(type="conversation", summary=_truncate(user_message, 200), tags=tools_used)
        if tools_used:
            episode.type = "tool_use"
            episode.detail = f"Used: {', '.join(tools_used)}"
        return self.save_episode(episode)
