# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""OpenAI-compatible provider, pointed at OpenRouter by default."""

import os
import logging

import openai

from typing import Any, Optional
from openai import AsyncOpenAI

from .base_provider import BaseProvider
from ...types.errors import OracleTransportError
from ...types.llm_types import Completion, Message, ToolCall, TokenUsage

logger = logging.getLogger(__name__)

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
ATTRIBUTION_HEADERS = {
    "HTTP-Referer": "https://github.com/walter-grace/pico-flare",
    "X-Title": "PicoFlare",
}


class OpenRouterProvider(BaseProvider):
    """Provider implementation for any OpenAI chat-completions endpoint."""

    def __init__(
        self,
        api_key: str,
        base_url: str = OPENROUTER_BASE_URL,
        timeout: float = 600.0,
        client: Optional[AsyncOpenAI] = None,
    ):
        self.client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            default_headers=ATTRIBUTION_HEADERS,
        )

    def _create_token_usage(self, response: Any) -> TokenUsage:
        usage = getattr(response, "usage", None)
        if not usage:
            logger.warning("Missing usage information from API response. Setting to 0")
            return TokenUsage()
        return TokenUsage(
            prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )

    def _parse_tool_calls(self, message: Any) -> list[ToolCall]:
        calls = []
        for tc in getattr(message, "tool_calls", None) or []:
            function = getattr(tc, "function", None)
            if function is None or not function.name:
                continue
            calls.append(
                ToolCall(
                    id=tc.id or f"call_{os.urandom(6).hex()}",
                    name=function.name,
                    arguments=function.arguments or "{}",
                )
            )
        return calls

    async def create_completion(
        self,
        model: str,
        messages: list[Message],
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> Completion:
        request: dict[str, Any] = {
            "model": model,
            "messages": [m.to_openai() for m in messages],
        }
        if tools:
            request["tools"] = tools

        try:
            response = await self.client.chat.completions.create(**request)
        except openai.OpenAIError as e:
            raise OracleTransportError(f"LLM request failed: {e}") from e

        if not getattr(response, "choices", None):
            error = getattr(response, "error", None)
            if error:
                raise OracleTransportError(f"LLM error: {error}")
            raise OracleTransportError("LLM returned no choices")

        choice = response.choices[0]
        completion = Completion(
            content=choice.message.content or "",
            tool_calls=self._parse_tool_calls(choice.message),
            model=getattr(response, "model", None) or model,
            stop_reason=self.map_stop_reason(choice.finish_reason),
            usage=self._create_token_usage(response),
        )
        logger.debug(f"Completion from {model}:\n{completion}")
        return completion
