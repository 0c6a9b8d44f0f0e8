# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import json
import pytest

from picoflare.cognition.memory import Memory
from picoflare.cognition.metacognition import MetaCognition
from picoflare.context.skills import split_frontmatter
from picoflare.llm.metering import TokenLedger
from picoflare.storage.blob_store import BlobStore
from picoflare.tools import toolkits
from picoflare.tools.base_tool import ToolContext, ToolRegistry
from picoflare.tools.memory_tools import Tokenomics
from picoflare.tools.skill_tools import CreateSkill
from picoflare.types.llm_types import TokenUsage


@pytest.fixture
def store(tmp_path):
    return BlobStore(tmp_path / "data")


class TestMemoryTools:
    @pytest.fixture
    def memory(self, store):
        return Memory(store)

    @pytest.fixture
    def registry(self, memory):
        return ToolRegistry(tool.definition(memory=memory) for tool in toolkits["memory"])

    @pytest.mark.asyncio
    async def test_learn_and_recall_fact(self, registry):
        ctx = ToolContext(conversation_id="42")

        learned = await registry.dispatch(
            ctx, "learn_fact", '{"category": "user", "content": "Prefers Rust", "confidence": 0.9}'
        )
        recalled = await registry.dispatch(ctx, "recall_facts", '{"category": "user"}')

        assert learned == "Learned [user]: Prefers Rust (confidence: 90%)"
        assert recalled == "- [user] Prefers Rust (90%)"

    @pytest.mark.asyncio
    async def test_facts_are_namespaced_per_conversation(self, registry, memory):
        await registry.dispatch(
            ToolContext(conversation_id="a"), "learn_fact", '{"category": "project", "content": "Uses R2"}'
        )

        other = await registry.dispatch(ToolContext(conversation_id="b"), "recall_facts", "{}")

        assert other == "No facts stored yet."
        assert [f.content for f in memory.for_agent("chat-a").query_facts()] == ["Uses R2"]

    @pytest.mark.asyncio
    async def test_invalid_category(self, registry):
        text = await registry.dispatch(ToolContext(), "learn_fact", '{"category": "gossip", "content": "x"}')
        assert text.startswith("Error: invalid arguments for learn_fact")

    @pytest.mark.asyncio
    async def test_episode_and_procedure_show_in_recall(self, registry):
        ctx = ToolContext(conversation_id="7")
        await registry.dispatch(ctx, "save_episode", '{"type": "insight", "summary": "Deploys need a token"}')
        learned = await registry.dispatch(
            ctx,
            "learn_procedure",
            json.dumps({"name": "deploy", "description": "Ship a worker", "steps": ["build", "upload"]}),
        )

        recall = await registry.dispatch(ctx, "recall_memory", '{"budget": "small"}')

        assert learned == "Procedure learned: deploy (2 steps)"
        assert "### Recent Activity" in recall
        assert "[insight] Deploys need a token" in recall
        assert "- **deploy**: Ship a worker (used 0x)" in recall

    @pytest.mark.asyncio
    async def test_empty_recall(self, registry):
        text = await registry.dispatch(ToolContext(conversation_id="new"), "recall_memory", "{}")
        assert text == "(Memory is empty. I'll learn as we interact.)\n"


class TestMetaTools:
    @pytest.fixture
    def meta(self, store):
        return MetaCognition(store)

    @pytest.fixture
    def registry(self, meta):
        return ToolRegistry(tool.definition(meta=meta) for tool in toolkits["meta"])

    @pytest.mark.asyncio
    async def test_set_goal(self, registry, meta):
        text = await registry.dispatch(ToolContext(), "set_goal", '{"description": "Ship v1", "priority": 1}')

        assert text == "Goal set [P1]: Ship v1 (active)"
        assert "- [P1] Ship v1" in meta.build_meta_context()

    @pytest.mark.asyncio
    async def test_update_goal_by_id(self, registry, meta):
        await registry.dispatch(ToolContext(), "set_goal", '{"description": "Ship v1", "id": "goal-1"}')
        await registry.dispatch(
            ToolContext(), "set_goal", '{"description": "Ship v1", "id": "goal-1", "status": "completed"}'
        )

        goals = meta.load_goals()
        assert len(goals) == 1
        assert goals[0].status == "completed"
        assert meta.build_meta_context() == ""

    @pytest.mark.asyncio
    async def test_priority_out_of_range(self, registry):
        text = await registry.dispatch(ToolContext(), "set_goal", '{"description": "x", "priority": 9}')
        assert text.startswith("Error: invalid arguments for set_goal")

    @pytest.mark.asyncio
    async def test_self_reflect(self, registry, meta):
        text = await registry.dispatch(
            ToolContext(),
            "self_reflect",
            json.dumps({"observation": "Slow deploy", "assessment": "ok", "improvement": "Cache builds"}),
        )

        assert text == "Reflection saved."
        assert "Slow deploy -> Cache builds" in meta.build_meta_context()


class TestTokenomics:
    @pytest.mark.asyncio
    async def test_report(self):
        ledger = TokenLedger()
        ledger.record_message()
        ledger.record_llm_call("openai/gpt-4o-mini", TokenUsage(prompt_tokens=100, completion_tokens=20))
        ledger.record_tool_call("read_file")
        registry = ToolRegistry([Tokenomics.definition(ledger=ledger)])

        text = await registry.dispatch(ToolContext(), "tokenomics", "{}")

        assert text.startswith("## Tokenomics Report")
        assert "- Tokens: 100 in / 20 out (120 total)" in text
        assert "- Tools used: read_file(1)" in text


class TestCreateSkill:
    @pytest.mark.asyncio
    async def test_writes_skill_with_frontmatter(self, tmp_path):
        registry = ToolRegistry([CreateSkill.definition(workspace=tmp_path)])

        text = await registry.dispatch(
            ToolContext(),
            "create_skill",
            json.dumps({"name": "NextJS Specialist", "description": "Builds Next.js apps", "content": "Use app router.\n"}),
        )

        path = tmp_path / "skills" / "nextjs-specialist" / "SKILL.md"
        assert text.startswith("Skill 'nextjs-specialist' created at skills/nextjs-specialist/SKILL.md")
        meta, body = split_frontmatter(path.read_text())
        assert meta == {"name": "nextjs-specialist", "description": "Builds Next.js apps"}
        assert body == "Use app router."

    @pytest.mark.asyncio
    async def test_blank_name(self, tmp_path):
        registry = ToolRegistry([CreateSkill.definition(workspace=tmp_path)])
        text = await registry.dispatch(
            ToolContext(), "create_skill", '{"name": "   ", "description": "d", "content": "c"}'
        )
        assert text == "Error: name is required"
