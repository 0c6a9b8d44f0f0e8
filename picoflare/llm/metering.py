# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import logging
import threading

from datetime import datetime
from collections import defaultdict
from typing import DefaultDict, Optional
from pydantic import BaseModel, Field

from ..types.llm_types import TokenUsage
from ..storage.blob_store import BlobStore

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

LEDGER_KEY = "memory/tokenomics/lifetime.json"

# USD per 1M tokens (input, output); approximate OpenRouter prices
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "moonshotai/kimi-k2.5": (0.60, 2.40),
    "anthropic/claude-sonnet-4": (3.00, 15.00),
    "anthropic/claude-3.5-sonnet": (3.00, 15.00),
    "openai/gpt-4o": (2.50, 10.00),
    "openai/gpt-4o-mini": (0.15, 0.60),
    "google/gemini-2.5-flash": (0.15, 0.60),
    "deepseek/deepseek-chat": (0.14, 0.28),
}
DEFAULT_PRICING = (0.50, 2.00)


def estimate_cost(model: str, usage: TokenUsage) -> float:
    input_price, output_price = MODEL_PRICING.get(model, DEFAULT_PRICING)
    return (usage.prompt_tokens * input_price + usage.completion_tokens * output_price) / 1_000_000


class SessionStats(BaseModel):
    started_at: datetime = Field(default_factory=datetime.now)
    messages: int = 0
    iterations: int = 0
    tool_calls: int = 0
    usage: TokenUsage = Field(default_factory=TokenUsage)
    by_tool: DefaultDict[str, int] = Field(default_factory=lambda: defaultdict(int))
    by_model: DefaultDict[str, int] = Field(default_factory=lambda: defaultdict(int))
    cost_usd: float = 0.0


class LifetimeStats(BaseModel):
    first_seen: datetime = Field(default_factory=datetime.now)
    total_sessions: int = 0
    total_messages: int = 0
    total_tool_calls: int = 0
    usage: TokenUsage = Field(default_factory=TokenUsage)
    total_cost_usd: float = 0.0
    by_tool: DefaultDict[str, int] = Field(default_factory=lambda: defaultdict(int))
    by_day: DefaultDict[str, int] = Field(default_factory=lambda: defaultdict(int))


class TokenLedger:
    """
    Token and cost accounting for this process and across restarts.

    All record methods take an internal lock, so they can be called from the
    agent loop, subagents and background tasks alike.
    """

    def __init__(self, store: Optional[BlobStore] = None):
        self.store = store
        self.session = SessionStats()
        self.lifetime = LifetimeStats()
        self._lock = threading.Lock()

    def load_lifetime(self) -> None:
        if self.store is None:
            return
        data = self.store.get_json(LEDGER_KEY)
        with self._lock:
            if data is None:
                self.lifetime = LifetimeStats()
                return
            try:
                self.lifetime = LifetimeStats.model_validate(data)
            except ValueError as e:
                logger.warning(f"Discarding unreadable lifetime ledger: {e}")
                self.lifetime = LifetimeStats()
            self.lifetime.total_sessions += 1

    def save_lifetime(self) -> None:
        if self.store is None:
            return
        with self._lock:
            data = self.lifetime.model_dump(mode="json")
        self.store.put_json(LEDGER_KEY, data)

    def record_message(self) -> None:
        with self._lock:
            self.session.messages += 1
            self.lifetime.total_messages += 1

    def record_llm_call(self, model: str, usage: TokenUsage) -> None:
        cost = estimate_cost(model, usage)
        today = datetime.now().strftime("%Y%m%d")
        with self._lock:
            self.session.iterations += 1
            self.session.usage += usage
            self.session.by_model[model] += usage.total_tokens
            self.session.cost_usd += cost
            self.lifetime.usage += usage
            self.lifetime.total_cost_usd += cost
            self.lifetime.by_day[today] += usage.total_tokens

    def record_tool_call(self, tool_name: str) -> None:
        with self._lock:
            self.session.tool_calls += 1
            self.session.by_tool[tool_name] += 1
            self.lifetime.total_tool_calls += 1
            self.lifetime.by_tool[tool_name] += 1

    def budget_summary(self) -> str:
        """Compact counters for the system prompt."""
        with self._lock:
            s = self.session
            return (
                f"Session: {s.messages} messages, {s.iterations} LLM calls, "
                f"{s.usage.total_tokens} tokens (~${s.cost_usd:.4f}), {s.tool_calls} tool calls\n"
                f"Lifetime: {self.lifetime.usage.total_tokens} tokens, "
                f"${self.lifetime.total_cost_usd:.4f} total\n"
            )

    def report(self) -> str:
        with self._lock:
            s, lt = self.session, self.lifetime
            lines = [
                "## Tokenomics Report",
                "",
                "### This Session",
                f"- Messages: {s.messages}",
                f"- LLM iterations: {s.iterations}",
                f"- Tokens: {s.usage.prompt_tokens} in / {s.usage.completion_tokens} out "
                f"({s.usage.total_tokens} total)",
                f"- Tool calls: {s.tool_calls}",
                f"- Estimated cost: ${s.cost_usd:.6f}",
            ]
            if s.by_tool:
                used = ", ".join(f"{k}({v})" for k, v in sorted(s.by_tool.items()))
                lines.append(f"- Tools used: {used}")
            lines += [
                "",
                "### Lifetime",
                f"- Since: {lt.first_seen:%Y-%m-%d}",
                f"- Sessions: {lt.total_sessions}",
                f"- Messages: {lt.total_messages}",
                f"- Tokens: {lt.usage.prompt_tokens} in / {lt.usage.completion_tokens} out",
                f"- Tool calls: {lt.total_tool_calls}",
                f"- Total cost: ${lt.total_cost_usd:.6f}",
            ]
        return "\n".join(lines) + "\n"
