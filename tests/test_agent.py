# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""End-to-end tests of Agent.process_message with a scripted oracle."""
import time
import asyncio
import pytest

from datetime import datetime
from unittest.mock import AsyncMock

from picoflare.agent import Agent
from picoflare.config import Settings
from picoflare.cognition.evolution import ExtensionRegistry
from picoflare.cognition.memory import Memory
from picoflare.cognition.metacognition import MetaCognition
from picoflare.context.assembler import SUBAGENT_PROMPT
from picoflare.llm.metering import TokenLedger
from picoflare.storage.blob_store import BlobStore

from .fakes import HangingProvider, RoutingProvider, ScriptedProvider, final, tool_calls

FIXED_NOW = datetime(2025, 3, 14, 9, 26, 53)


@pytest.fixture
def workspace(tmp_path):
    root = tmp_path / "workspace"
    root.mkdir()
    (root / "answer.txt").write_text("42")
    return root


@pytest.fixture
def store(tmp_path):
    return BlobStore(tmp_path / "data")


def make_agent(provider, workspace=None, store=None, on_subagent_complete=None, **settings) -> Agent:
    kwargs = {}
    if store is not None:
        kwargs = dict(
            memory=Memory(store),
            meta=MetaCognition(store),
            extensions=ExtensionRegistry(store),
            ledger=TokenLedger(store),
        )
    return Agent(
        provider,
        Settings(model="test/model", workspace=workspace, **settings),
        on_subagent_complete=on_subagent_complete,
        clock=lambda: FIXED_NOW,
        **kwargs,
    )


class TestProcessMessage:
    @pytest.mark.asyncio
    async def test_simple_question(self):
        agent = make_agent(ScriptedProvider([final("Paris")]))

        reply = await agent.process_message("c1", "Capital of France?")

        assert reply == "Paris"
        session = agent.sessions.get("c1")
        assert [m.role for m in session.messages] == ["system", "user", "assistant"]
        assert session.messages[1].content == "Capital of France?"

    @pytest.mark.asyncio
    async def test_tool_round_trip(self, workspace):
        provider = ScriptedProvider(
            [tool_calls(("read_file", {"path": "answer.txt"})), final("The answer is 42")]
        )
        agent = make_agent(provider, workspace=workspace)

        reply = await agent.process_message("c1", "What is in answer.txt?")

        assert reply == "The answer is 42"
        messages = agent.sessions.get("c1").messages
        assert [m.role for m in messages] == ["system", "user", "assistant", "tool", "assistant"]
        assert messages[3].content == "42"
        assert messages[3].tool_call_id == messages[2].tool_calls[0].id

    @pytest.mark.asyncio
    async def test_conversation_continues(self):
        provider = ScriptedProvider([final("first"), final("second")])
        agent = make_agent(provider)

        await agent.process_message("c1", "one")
        await agent.process_message("c1", "two")

        assert len(agent.sessions.get("c1")) == 5
        assert [m.content for m in provider.calls[1]][1:] == ["one", "first", "two"]

    @pytest.mark.asyncio
    async def test_iteration_limit_reply(self):
        provider = ScriptedProvider([tool_calls(("list_things", {}))])
        agent = make_agent(provider, max_iterations=4)

        reply = await agent.process_message("c1", "loop")

        assert len(provider.calls) == 4
        assert reply

    @pytest.mark.asyncio
    async def test_timeout_reply(self):
        agent = make_agent(HangingProvider(), agent_timeout=0.2)

        start = time.monotonic()
        reply = await agent.process_message("c1", "hello?")

        assert reply.startswith("Request timed out or was cancelled after")
        assert time.monotonic() - start < 2.0

    @pytest.mark.asyncio
    async def test_unknown_tool_continues(self):
        provider = ScriptedProvider([tool_calls(("teleport", {})), final("I can't teleport")])
        agent = make_agent(provider)

        reply = await agent.process_message("c1", "teleport me")

        assert reply == "I can't teleport"
        tool_message = agent.sessions.get("c1").messages[3]
        assert "unknown tool: teleport" in tool_message.content

    @pytest.mark.asyncio
    async def test_transcript_cap(self):
        provider = ScriptedProvider([final("ok")])
        agent = make_agent(provider, max_session_messages=6)

        for i in range(20):
            await agent.process_message("c1", f"message {i}")
            session = agent.sessions.get("c1")
            assert len(session) <= 7
            assert session.messages[0].role == "system"

    @pytest.mark.asyncio
    async def test_transcript_cap_holds_between_turns(self):
        provider = ScriptedProvider(
            [tool_calls(("teleport", {})) for _ in range(6)] + [final("done")]
        )
        agent = make_agent(provider, max_session_messages=4)

        await agent.process_message("c1", "keep going")

        # A turn's own tool traffic grows the transcript until it ends
        assert max(len(snapshot) for snapshot in provider.calls) > 5
        session = agent.sessions.get("c1")
        assert len(session) <= 5
        assert session.messages[0].role == "system"
        assert session.messages[1].role != "tool"

    @pytest.mark.asyncio
    async def test_timeout_mid_tool_leaves_a_valid_transcript(self, workspace):
        provider = ScriptedProvider(
            [tool_calls(("shell", {"command": "sleep 5"})), final("ok")]
        )
        agent = make_agent(provider, workspace, agent_timeout=0.3)

        first = await agent.process_message("c1", "run the slow thing")
        second = await agent.process_message("c1", "are you there?")

        assert first.startswith("Request timed out or was cancelled after")
        assert second == "ok"
        snapshot = provider.calls[-1]
        requested = [c.id for m in snapshot if m.tool_calls for c in m.tool_calls]
        answered = [m.tool_call_id for m in snapshot if m.role == "tool"]
        assert requested and requested == answered
        assert snapshot[-1].role == "user"

    @pytest.mark.asyncio
    async def test_deterministic_with_fixed_clock(self, workspace):
        script = [tool_calls(("list_files", {})), final("done")]

        transcripts = []
        for _ in range(2):
            agent = make_agent(ScriptedProvider(script), workspace=workspace)
            await agent.process_message("c1", "list")
            transcripts.append([m.model_dump() for m in agent.sessions.get("c1").messages])

        assert transcripts[0] == transcripts[1]

    @pytest.mark.asyncio
    async def test_model_override(self):
        provider = ScriptedProvider([final("ok")])
        agent = make_agent(provider)

        await agent.set_model("c1", "other/model")
        assert agent.get_model("c1") == "other/model"
        assert agent.get_model("c2") == "test/model"
        await agent.process_message("c1", "hi")
        await agent.set_model("c1", "")

        assert provider.models == ["other/model"]
        assert agent.get_model("c1") == "test/model"


class TestToolSet:
    def test_minimal_tool_set(self):
        agent = make_agent(ScriptedProvider([final("x")]))
        assert agent.registry.names == ["http_request", "subagent"]

    def test_full_tool_set(self, workspace, store):
        agent = make_agent(
            ScriptedProvider([final("x")]),
            workspace=workspace,
            store=store,
            on_subagent_complete=AsyncMock(),
            cloudflare_account_id="acc",
            cloudflare_api_token="tok",
        )
        names = agent.registry.names
        for expected in (
            "read_file", "write_file", "edit_file", "list_files", "shell", "create_skill",
            "http_request", "cloud_api", "learn_fact", "recall_facts", "save_episode",
            "learn_procedure", "recall_memory", "set_goal", "self_reflect", "tokenomics",
            "create_tool", "list_my_tools", "remove_tool", "evolve_prompt", "subagent", "spawn",
        ):
            assert expected in names
        assert len(names) == len(set(names))

    @pytest.mark.asyncio
    async def test_create_tool_refreshes_catalog(self, store):
        provider = ScriptedProvider(
            [
                tool_calls(
                    ("create_tool", {"name": "weather", "description": "Get weather", "endpoint": "https://example.com/w"})
                ),
                final("Created it"),
                final("ok"),
            ]
        )
        agent = make_agent(provider, store=store)
        before = agent.registry

        await agent.process_message("c1", "make a weather tool")

        assert "dyn_weather" not in before
        assert "dyn_weather" in agent.registry

        await agent.process_message("c1", "now what?")
        names = {t["function"]["name"] for t in provider.catalogs[-1]}
        assert "dyn_weather" in names

    @pytest.mark.asyncio
    async def test_refresh_session_replaces_prompt(self, store):
        agent = make_agent(ScriptedProvider([final("ok")]), store=store)
        await agent.process_message("c1", "hi")
        Memory(store).for_agent("chat-c1").extract_and_learn("remember me", "ok", [])

        assert await agent.refresh_session("c1") is True
        assert await agent.refresh_session("missing") is False
        assert "remember me" in agent.sessions.get("c1").messages[0].content


class TestBackgroundWork:
    @pytest.mark.asyncio
    async def test_episode_and_ledger_persisted(self, store):
        agent = make_agent(ScriptedProvider([final("noted")]), store=store)

        await agent.process_message("c1", "log this please")
        await agent.wait_for_background()

        episodes = Memory(store).for_agent("chat-c1").load_recent_episodes()
        assert [e.summary for e in episodes] == ["log this please"]
        assert store.exists("memory/tokenomics/lifetime.json")

    @pytest.mark.asyncio
    async def test_background_failure_does_not_affect_reply(self, store):
        agent = make_agent(ScriptedProvider([final("still fine")]), store=store)

        def broken(*args, **kwargs):
            raise OSError("disk full")

        agent.ledger.save_lifetime = broken
        reply = await agent.process_message("c1", "hi")
        await agent.wait_for_background()

        assert reply == "still fine"

    @pytest.mark.asyncio
    async def test_no_episode_after_oracle_error(self, store):
        from picoflare.types.errors import OracleTransportError

        agent = make_agent(ScriptedProvider([OracleTransportError("down")]), store=store)

        reply = await agent.process_message("c1", "hi")
        await agent.wait_for_background()

        assert reply == "Error: down"
        assert Memory(store).for_agent("chat-c1").load_recent_episodes() == []


class TestSpawnThroughAgent:
    @pytest.mark.asyncio
    async def test_spawn_reports_via_callback(self, workspace):
        child = ScriptedProvider([final("child finished the audit")])
        parent = ScriptedProvider(
            [
                tool_calls(("spawn", {"task": "audit the repo", "label": "audit"})),
                final("Started an audit in the background."),
            ]
        )
        provider = RoutingProvider({SUBAGENT_PROMPT: child}, default=parent)
        callback = AsyncMock()
        agent = make_agent(provider, workspace=workspace, on_subagent_complete=callback)

        reply = await agent.process_message("c9", "audit please")

        assert reply == "Started an audit in the background."
        ack = agent.sessions.get("c9").messages[3].content
        assert ack == "Spawned subagent 'audit' for task. Will report when done."

        await agent.wait_for_background()
        callback.assert_awaited_once()
        conversation_id, text = callback.await_args.args
        assert conversation_id == "c9"
        assert "child finished the audit" in text
        assert "subagent-1" in agent.status("c9")

    @pytest.mark.asyncio
    async def test_sync_subagent_result_is_tool_output(self, workspace):
        child = ScriptedProvider([final("3 files")])
        parent = ScriptedProvider(
            [tool_calls(("subagent", {"task": "count files"})), final("There are 3 files.")]
        )
        agent = make_agent(RoutingProvider({SUBAGENT_PROMPT: child}, default=parent), workspace=workspace)

        reply = await agent.process_message("c1", "how many files?")

        assert reply == "There are 3 files."
        assert agent.sessions.get("c1").messages[3].content == "Subagent completed:\n3 files"

    @pytest.mark.asyncio
    async def test_concurrent_conversations(self):
        gate = asyncio.Event()

        class SlowFirst(ScriptedProvider):
            async def create_completion(self, model, messages, tools=None):
                if messages[1].content == "slow":
                    await gate.wait()
                return await super().create_completion(model, messages, tools)

        agent = make_agent(SlowFirst([final("ok")]))
        slow = asyncio.create_task(agent.process_message("a", "slow"))
        await asyncio.sleep(0.01)
        assert await agent.process_message("b", "fast") == "ok"
        gate.set()
        assert await slow == "ok"
