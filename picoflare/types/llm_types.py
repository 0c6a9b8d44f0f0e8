# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Transcript and oracle response types."""

import json

from enum import Enum
from typing import Any, Literal, Optional
from pydantic import BaseModel, Field


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class StopReason(str, Enum):
    """Normalised finish reasons"""

    COMPLETE = "complete"
    TOOL_CALLS = "tool_calls"
    LENGTH = "length"
    ERROR = "error"


class TokenUsage(BaseModel):
    """Token counts reported by the oracle for a single call."""

    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
        )


class ToolCall(BaseModel):
    """A tool invocation requested by the oracle."""

    id: str
    name: str
    arguments: str = "{}"  # raw JSON string, decoded at the dispatch boundary

    def to_openai(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments},
        }


class Message(BaseModel):
    """One transcript entry."""

    role: Literal["system", "user", "assistant", "tool"]
    content: Optional[str] = None
    tool_calls: list[ToolCall] = Field(default_factory=list)
    tool_call_id: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM.value, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER.value, content=content)

    @classmethod
    def assistant(cls, content: str | None, tool_calls: list[ToolCall] | None = None) -> "Message":
        return cls(role=Role.ASSISTANT.value, content=content, tool_calls=tool_calls or [])

    @classmethod
    def tool_result(cls, call: ToolCall, content: str) -> "Message":
        return cls(role=Role.TOOL.value, content=content, tool_call_id=call.id, name=call.name)

    def to_openai(self) -> dict[str, Any]:
        """Convert to the chat-completions wire format"""
        msg: dict[str, Any] = {"role": self.role}
        if self.content is not None or not self.tool_calls:
            msg["content"] = self.content or ""
        if self.tool_calls:
            msg["tool_calls"] = [tc.to_openai() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            msg["tool_call_id"] = self.tool_call_id
        if self.name is not None and self.role == Role.TOOL.value:
            msg["name"] = self.name
        return msg

    def __str__(self) -> str:
        parts = [f"Message from role={self.role}"]
        if self.content:
            parts.append(f"Text {'-'*10}\n{self.content}")
        for tc in self.tool_calls:
            parts.append(f"{'-'*10}\nTool call {tc.name} (id: {tc.id}): {tc.arguments}\n{'-'*10}")
        if self.tool_call_id:
            parts.append(f"(result for {self.name} id: {self.tool_call_id})")
        return "\n".join(parts)


class Completion(BaseModel):
    """A decision returned by the oracle: final text, tool calls, or both."""

    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    model: str = ""
    stop_reason: StopReason = StopReason.COMPLETE
    usage: TokenUsage = Field(default_factory=TokenUsage)

    @property
    def is_final(self) -> bool:
        return len(self.tool_calls) == 0

    def __str__(self) -> str:
        comp_str = f"{'='*80}\n"
        if self.content:
            comp_str += self.content + "\n"
        for tc in self.tool_calls:
            comp_str += f"tool call {tc.name}({tc.arguments}) id={tc.id}\n"
        comp_str += f"{'-'*80}\n"
        comp_str += f"Model: {self.model}\n"
        comp_str += f"Tokens: {self.usage.prompt_tokens} in / {self.usage.completion_tokens} out\n"
        if self.stop_reason != StopReason.COMPLETE:
            comp_str += f"Stop reason: {self.stop_reason.value}\n"
        comp_str += f"{'='*80}\n"
        return comp_str


def tool_definition_to_openai(name: str, description: str, parameters: dict) -> dict:
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": parameters,
        },
    }


def args_preview(arguments: str, n: int = 150) -> str:
    """Single-line preview of a raw arguments string for logs"""
    try:
        text = json.dumps(json.loads(arguments or "{}"))
    except json.JSONDecodeError:
        text = arguments
    return text if len(text) <= n else text[:n] + "..."
