# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
The agent loop: ask the oracle for a decision, run the tools it requests, and
repeat until it answers, the iteration cap is hit or the deadline passes.

The loop never raises for tool failures (they are fed back to the oracle as
``Error: ...`` text) and turns oracle failures, the iteration cap and the
deadline into distinct ``LoopResult`` statuses, so the caller always has a
readable reply.
"""

import asyncio
import logging

from datetime import datetime
from typing import Optional

from .sessions import Session
from ..llm.metering import TokenLedger
from ..llm.providers.base_provider import BaseProvider
from ..tools.base_tool import ToolContext, ToolRegistry
from ..types.agent_types import AgentMetrics, AgentStatus, LoopResult
from ..types.errors import OracleTransportError
from ..types.llm_types import Message, args_preview

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

DEFAULT_MAX_ITERATIONS = 24
DEFAULT_TIMEOUT = 300.0
ITERATION_LIMIT_NOTE = "(Reached iteration limit. I may need to continue.)"
EMPTY_REPLY = "(no response)"
UNANSWERED_RESULT = "Error: cancelled ({reason})"


def format_duration(seconds: float) -> str:
    """Render a duration as e.g. ``5m0s`` or ``2.5s``."""
    minutes, rest = divmod(seconds, 60)
    if minutes >= 1:
        return f"{int(minutes)}m{rest:.0f}s"
    return f"{rest:g}s"


def timeout_message(seconds: float) -> str:
    return f"Request timed out or was cancelled after {format_duration(seconds)}."


class AgentLoop:
    """
    One configured loop. The same instance can run any number of sessions
    concurrently; all per-run state lives in ``run``.

    Args:
        provider: The oracle
        registry: Tool snapshot the loop dispatches against
        model: Default model identifier, overridden by ``context.model``
        max_iterations: Hard cap on oracle calls
        timeout: Wall-clock budget in seconds for the whole run
        ledger: Optional usage ledger
        name: Label used in log lines
    """

    def __init__(
        self,
        provider: BaseProvider,
        registry: ToolRegistry,
        model: str,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        timeout: float = DEFAULT_TIMEOUT,
        ledger: Optional[TokenLedger] = None,
        name: str = "agent",
        limit_note: str = ITERATION_LIMIT_NOTE,
    ):
        self.provider = provider
        self.registry = registry
        self.model = model
        self.max_iterations = max_iterations
        self.timeout = timeout
        self.ledger = ledger
        self.name = name
        self.limit_note = limit_note

    async def run(self, session: Session, context: Optional[ToolContext] = None) -> LoopResult:
        """
        Drive ``session`` until a terminal state. The session must already
        hold the system prompt and the message to respond to.
        """
        if context is None:
            context = ToolContext(registry=self.registry)
        elif context.registry is None:
            context = context.model_copy(update={"registry": self.registry})

        metrics = AgentMetrics(start_time=datetime.now())
        tools_used: list[str] = []
        # pending: tool calls already in the transcript that have no result yet
        state = {"last_content": "", "pending": []}

        def finish(status: AgentStatus, reply: str, errors: Optional[str] = None) -> LoopResult:
            metrics.end_time = datetime.now()
            return LoopResult(
                status=status,
                reply=reply,
                metrics=metrics,
                tools_used=tools_used,
                errors=errors,
            )

        deadline = asyncio.timeout(self.timeout)
        try:
            async with deadline:
                return await self._iterate(session, context, metrics, tools_used, state, finish)
        except TimeoutError as e:
            if deadline.expired():
                logger.warning(f"[{self.name}] Timed out after {format_duration(self.timeout)}")
                await self._answer_pending(session, state, "timeout")
                message = timeout_message(self.timeout)
                return finish(AgentStatus.TIMEOUT, message, errors=message)
            await self._answer_pending(session, state, "error")
            logger.error(f"[{self.name}] Oracle call failed: {e}")
            return finish(AgentStatus.ERROR, f"Error: {e}", errors=str(e))
        except OracleTransportError as e:
            logger.error(f"[{self.name}] Oracle call failed: {e}")
            return finish(AgentStatus.ERROR, f"Error: {e}", errors=str(e))

    async def _iterate(self, session, context, metrics, tools_used, state, finish) -> LoopResult:
        catalog = self.registry.to_catalog() or None
        model = context.model or self.model

        for iteration in range(self.max_iterations):
            messages = await session.snapshot()
            logger.info(f"[{self.name}] Awaiting completion for iteration {iteration} ({len(messages)} messages)...")
            completion = await self.provider.create_completion(
                model=model, messages=messages, tools=catalog
            )
            logger.info(f"[{self.name}] Completion received for iteration {iteration}.")

            metrics.iterations += 1
            metrics.token_usage += completion.usage
            if self.ledger is not None:
                self.ledger.record_llm_call(completion.model or model, completion.usage)

            state["last_content"] = completion.content

            if completion.is_final:
                reply = completion.content or EMPTY_REPLY
                await session.append(Message.assistant(completion.content))
                return finish(AgentStatus.SUCCESS, reply)

            await session.append(Message.assistant(completion.content or None, completion.tool_calls))
            state["pending"] = list(completion.tool_calls)
            for call in completion.tool_calls:
                logger.info(f"[{self.name}] Tool call: {call.name}({args_preview(call.arguments)})")
                metrics.tool_calls += 1
                tools_used.append(call.name)
                if self.ledger is not None:
                    self.ledger.record_tool_call(call.name)

                result = await self.registry.dispatch(context, call.name, call.arguments)
                logger.info(f"[{self.name}] Tool {call.name} returned {len(result)} chars")
                await session.append(Message.tool_result(call, result))
                state["pending"].pop(0)

        logger.warning(f"[{self.name}] Reached iteration limit ({self.max_iterations})")
        return finish(
            AgentStatus.ITERATION_LIMIT,
            state["last_content"] or self.limit_note,
            errors=f"iteration limit of {self.max_iterations} reached",
        )

    async def _answer_pending(self, session: Session, state: dict, reason: str) -> None:
        """Close out tool calls interrupted mid-turn so every request keeps a result."""
        pending, state["pending"] = state["pending"], []
        for call in pending:
            await session.append(Message.tool_result(call, UNANSWERED_RESULT.format(reason=reason)))
        if pending:
            logger.info(f"[{self.name}] Recorded {len(pending)} unanswered tool call(s) as cancelled")
