# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Tests for Session and SessionStore."""
import asyncio
import pytest

from picoflare.agents.sessions import Session, SessionStore
from picoflare.types.llm_types import Message, ToolCall


def counter_prompt():
    calls = {"n": 0}

    def build() -> str:
        calls["n"] += 1
        return f"system v{calls['n']}"

    return build, calls


class TestSession:
    def test_starts_with_system_prompt(self):
        session = Session("c1", "be helpful")
        assert len(session) == 1
        assert session.messages[0].role == "system"
        assert session.messages[0].content == "be helpful"

    def test_trim_keeps_position_zero(self):
        session = Session("c1", "sys")
        for i in range(120):
            session.messages.append(Message.user(f"m{i}"))

        removed = session.trim(50)

        assert removed == 70
        assert len(session) == 51
        assert session.messages[0].content == "sys"
        assert session.messages[1].content == "m70"
        assert session.messages[-1].content == "m119"

    def test_trim_noop_under_cap(self):
        session = Session("c1", "sys")
        for i in range(50):
            session.messages.append(Message.user(f"m{i}"))
        assert session.trim(50) == 0
        assert len(session) == 51

    def test_trim_drops_orphaned_tool_results(self):
        session = Session("c1", "sys")
        call = ToolCall(id="call_1", name="echo", arguments="{}")
        session.messages.append(Message.user("go"))
        session.messages.append(Message.assistant(None, [call]))
        session.messages.append(Message.tool_result(call, "r1"))
        session.messages.append(Message.tool_result(call, "r2"))
        session.messages.append(Message.assistant("done"))
        session.messages.append(Message.user("next"))

        session.trim(4)

        assert session.messages[0].role == "system"
        assert session.messages[1].role != "tool"
        assert len(session) <= 5

    @pytest.mark.asyncio
    async def test_snapshot_is_a_copy(self):
        session = Session("c1", "sys")
        snapshot = await session.snapshot()
        await session.append(Message.user("later"))
        assert len(snapshot) == 1
        assert len(session) == 2

    @pytest.mark.asyncio
    async def test_replace_system_prompt(self):
        session = Session("c1", "old")
        await session.append(Message.user("hi"))
        await session.replace_system_prompt("new")
        assert session.messages[0].content == "new"
        assert len(session) == 2

    def test_close_unanswered_fills_missing_results(self):
        session = Session("c1", "sys")
        a = ToolCall(id="call_a", name="shell", arguments="{}")
        b = ToolCall(id="call_b", name="shell", arguments="{}")
        session.messages.append(Message.user("go"))
        session.messages.append(Message.assistant(None, [a, b]))
        session.messages.append(Message.tool_result(a, "ok"))

        added = session.close_unanswered("Error: cancelled (interrupted)")

        assert added == 1
        assert session.messages[-1].tool_call_id == "call_b"
        assert session.messages[-1].content == "Error: cancelled (interrupted)"
        assert session.close_unanswered("again") == 0

    def test_close_unanswered_ignores_finished_turns(self):
        session = Session("c1", "sys")
        call = ToolCall(id="call_1", name="echo", arguments="{}")
        session.messages.append(Message.user("go"))
        session.messages.append(Message.assistant(None, [call]))
        session.messages.append(Message.assistant("done"))

        assert session.close_unanswered("x") == 0
        assert Session("c2", "sys").close_unanswered("x") == 0


class TestSessionStore:
    @pytest.mark.asyncio
    async def test_lazy_creation_builds_prompt_once(self):
        store = SessionStore()
        build, calls = counter_prompt()

        first = await store.get_or_create("c1", build)
        second = await store.get_or_create("c1", build)

        assert first is second
        assert calls["n"] == 1
        assert "c1" in store
        assert store.conversation_ids == ["c1"]

    @pytest.mark.asyncio
    async def test_sessions_are_independent(self):
        store = SessionStore()
        build, _ = counter_prompt()
        a = await store.get_or_create("a", build)
        b = await store.get_or_create("b", build)

        await store.begin_turn(a, "hello a", build)

        assert len(a) == 2
        assert len(b) == 1

    @pytest.mark.asyncio
    async def test_refresh_every_interval(self):
        store = SessionStore(max_messages=50, refresh_interval=15)
        build, calls = counter_prompt()
        session = await store.get_or_create("c1", build)
        for i in range(14):
            session.messages.append(Message.user(f"m{i}"))
        assert len(session) == 15

        await store.begin_turn(session, "the 16th", build)

        assert calls["n"] == 2
        assert session.messages[0].content == "system v2"
        assert session.messages[-1].content == "the 16th"

    @pytest.mark.asyncio
    async def test_no_refresh_on_first_turn(self):
        store = SessionStore(refresh_interval=1)
        build, calls = counter_prompt()
        session = await store.get_or_create("c1", build)

        await store.begin_turn(session, "hi", build)

        assert calls["n"] == 1

    @pytest.mark.asyncio
    async def test_transcript_never_exceeds_cap(self):
        store = SessionStore(max_messages=10)
        build, _ = counter_prompt()
        session = await store.get_or_create("c1", build)

        for i in range(40):
            await store.begin_turn(session, f"turn {i}", build)
            await session.append(Message.assistant(f"reply {i}"))
            await store.trim(session)
            assert len(session) <= 11
            assert session.messages[0].role == "system"

    @pytest.mark.asyncio
    async def test_concurrent_appends_are_serialised(self):
        session = Session("c1", "sys")
        await asyncio.gather(*(session.append(Message.user(str(i))) for i in range(100)))
        assert len(session) == 101

    @pytest.mark.asyncio
    async def test_begin_turn_closes_interrupted_tool_calls(self):
        store = SessionStore()
        build, _ = counter_prompt()
        session = await store.get_or_create("c1", build)
        call = ToolCall(id="call_1", name="shell", arguments="{}")
        await store.begin_turn(session, "run it", build)
        await session.append(Message.assistant(None, [call]))

        await store.begin_turn(session, "still there?", build)

        roles = [m.role for m in session.messages]
        assert roles == ["system", "user", "assistant", "tool", "user"]
        assert session.messages[3].tool_call_id == "call_1"
        assert session.messages[3].content.startswith("Error: cancelled")
