# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Base provider interface for the decision oracle."""

import logging

from abc import ABC, abstractmethod
from typing import Any, Optional

from ...types.llm_types import Completion, Message, StopReason

logger = logging.getLogger(__name__)


class BaseProvider(ABC):
    """
    Abstract base class for LLM providers.

    The agent loop only ever needs one opaque call: given a model id, a
    transcript and a tool catalog, return the next decision.
    """

    def map_stop_reason(self, finish_reason: Optional[str]) -> StopReason:
        """Map provider-specific finish reasons to the standard set."""
        if finish_reason == "tool_calls":
            return StopReason.TOOL_CALLS
        if finish_reason == "length":
            return StopReason.LENGTH
        if finish_reason == "error":
            return StopReason.ERROR
        return StopReason.COMPLETE

    @abstractmethod
    async def create_completion(
        self,
        model: str,
        messages: list[Message],
        tools: Optional[list[dict[str, Any]]] = None,
    ) -> Completion:
        """Request one decision from the oracle.

        Args:
            model: Provider model identifier
            messages: A snapshot of the transcript; providers must not mutate it
            tools: Function-calling catalog, or None for a tool-less call

        Raises:
            OracleTransportError: the call failed or returned nothing usable
        """
        pass
