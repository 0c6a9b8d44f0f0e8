# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import os
import json

from typing import Any
from pydantic import BaseModel, Field


class ToolResult(BaseModel):
    """Represents the result of a tool execution."""

    tool_name: str
    success: bool
    duration: float = 0.0  # on tool error paths, duration is often 0
    output: dict[str, Any] | str | None = None
    warnings: str | None = None
    errors: str | None = None
    invocation_id: str = Field(default_factory=lambda: os.urandom(4).hex())

    def to_text(self) -> str:
        """The tool-result text the oracle sees.

        Failures render as ``Error: <message>`` so that they read the same as
        errors caught at the dispatch boundary.
        """
        if not self.success:
            return f"Error: {self.errors or 'tool failed'}"

        if isinstance(self.output, dict):
            text = json.dumps(self.output, indent=2, default=str)
        else:
            text = self.output or "(no output)"
        if self.warnings:
            text += f"\nWarnings: {self.warnings}"
        return text

    def __str__(self):
        return self.to_text()
