# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Per-conversation transcripts.

A transcript always starts with the system prompt. It grows by appending and
is kept within a cap by a sliding window that never drops position 0.
"""

import asyncio
import logging

from datetime import datetime
from typing import Callable, Optional

from ..types.llm_types import Message, Role

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

INTERRUPTED_RESULT = "Error: cancelled (interrupted)"


class Session:
    """
    One conversation's transcript plus its bookkeeping.

    ``lock`` serialises transcript mutations and snapshots. ``turn_lock`` is
    held for a whole agent turn so two messages for the same conversation
    never interleave their tool calls and results.
    """

    def __init__(
        self,
        conversation_id: str,
        system_prompt: str,
        model_override: Optional[str] = None,
    ):
        self.conversation_id = conversation_id
        self.messages: list[Message] = [Message.system(system_prompt)]
        self.last_used = datetime.now()
        self.model_override = model_override
        self.lock = asyncio.Lock()
        self.turn_lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self.messages)

    async def snapshot(self) -> list[Message]:
        """A copy of the transcript, safe to hand to the oracle."""
        async with self.lock:
            return list(self.messages)

    async def append(self, message: Message) -> None:
        async with self.lock:
            self.messages.append(message)

    async def replace_system_prompt(self, system_prompt: str) -> None:
        async with self.lock:
            self.messages[0] = Message.system(system_prompt)

    def close_unanswered(self, result_text: str) -> int:
        """
        Give a result to every tool call of the last assistant message that has
        none, when nothing but tool results follows it. Callers must hold
        ``lock``. Returns the number of results added.
        """
        for i in range(len(self.messages) - 1, 0, -1):
            message = self.messages[i]
            if message.role == Role.TOOL.value:
                continue
            if message.role != Role.ASSISTANT.value or not message.tool_calls:
                return 0
            answered = {m.tool_call_id for m in self.messages[i + 1 :]}
            missing = [c for c in message.tool_calls if c.id not in answered]
            for call in missing:
                self.messages.append(Message.tool_result(call, result_text))
            return len(missing)
        return 0

    def trim(self, max_messages: int) -> int:
        """
        Keep the system prompt and the most recent ``max_messages`` entries.

        Tool results whose invoking assistant message fell out of the window
        are dropped as well, so the oldest kept entry is never an orphaned
        result. Callers must hold ``lock``. Returns the number of messages
        removed.

        The store trims when a turn starts and when it ends, so the cap holds
        between turns. While a turn runs, its assistant messages and tool
        results are appended untrimmed and the transcript can exceed the cap.
        """
        if len(self.messages) <= max_messages + 1:
            return 0
        kept = self.messages[-max_messages:]
        while kept and kept[0].role == Role.TOOL.value:
            kept = kept[1:]
        removed = len(self.messages) - 1 - len(kept)
        self.messages = [self.messages[0], *kept]
        return removed


class SessionStore:
    """
    Conversation id -> Session, created lazily on first use.

    Args:
        max_messages: Transcript cap between turns, excluding the system prompt
        refresh_interval: Regenerate the system prompt whenever the transcript
            length reaches a multiple of this at the start of a turn
    """

    def __init__(self, max_messages: int = 50, refresh_interval: int = 15):
        self.max_messages = max_messages
        self.refresh_interval = refresh_interval
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, conversation_id: str) -> bool:
        return conversation_id in self._sessions

    def get(self, conversation_id: str) -> Session | None:
        return self._sessions.get(conversation_id)

    @property
    def conversation_ids(self) -> list[str]:
        return list(self._sessions)

    async def get_or_create(
        self, conversation_id: str, build_prompt: Callable[[], str]
    ) -> Session:
        """Return the session, building its system prompt only when it is new."""
        async with self._lock:
            session = self._sessions.get(conversation_id)
            if session is None:
                session = Session(conversation_id, build_prompt())
                self._sessions[conversation_id] = session
                logger.info(f"Created session for conversation {conversation_id}")
            session.last_used = datetime.now()
            return session

    async def begin_turn(
        self, session: Session, user_text: str, build_prompt: Callable[[], str]
    ) -> None:
        """Refresh the system prompt if due, append the user message and trim."""
        async with session.lock:
            session.last_used = datetime.now()
            closed = session.close_unanswered(INTERRUPTED_RESULT)
            if closed:
                logger.warning(f"Closed {closed} unanswered tool call(s) in {session.conversation_id}")
            n = len(session.messages)
            if n > 1 and n % self.refresh_interval == 0:
                session.messages[0] = Message.system(build_prompt())
                logger.debug(f"Refreshed system prompt for {session.conversation_id}")
            session.messages.append(Message.user(user_text))
            removed = session.trim(self.max_messages)
            if removed:
                logger.debug(f"Trimmed {removed} messages from {session.conversation_id}")

    async def trim(self, session: Session) -> None:
        async with session.lock:
            session.trim(self.max_messages)
