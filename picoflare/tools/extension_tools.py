# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Tools that let the agent extend its own toolbelt and system prompt."""

import logging

from typing import Any, Optional
from pydantic import Field, PrivateAttr

from .base_tool import BaseTool, ToolContext, ToolDefinition
from ..cognition.evolution import DYNAMIC_PREFIX, DynamicTool, ExtensionRegistry, PromptPatch
from ..types.tool_types import ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


def dynamic_tool_definitions(extensions: ExtensionRegistry) -> list[ToolDefinition]:
    """Registry entries for every enabled dynamic tool."""
    definitions = []
    for tool in extensions.enabled_tools():

        async def handler(context: ToolContext, args: dict[str, Any], tool=tool) -> str:
            result = await extensions.call_http_tool(tool, args)
            extensions.increment_use(tool.name)
            return result

        schema = dict(tool.input_schema or {})
        schema.setdefault("type", "object")
        schema.setdefault("properties", {})
        definitions.append(
            ToolDefinition(
                name=tool.name,
                description=tool.description,
                parameters=schema,
                handler=handler,
            )
        )
    return definitions


class ExtensionTool(BaseTool):
    _extensions: ExtensionRegistry | None = PrivateAttr(default=None)


class CreateTool(ExtensionTool):
    TOOL_NAME = "create_tool"
    TOOL_DESCRIPTION = """Create a new HTTP tool for yourself.

The tool POSTs its JSON arguments to the given endpoint and returns the response body.
The new tool is named dyn_<name> and becomes available from the next message.
"""

    name: str = Field(..., description="Tool name (lowercase, underscores ok)", pattern=r"^[a-z0-9_]+$")
    description: str = Field(..., description="What the tool does", min_length=1)
    endpoint: str = Field(..., description="The URL to call", min_length=1)
    method: str = Field(default="POST", description="HTTP method (default POST)")
    input_schema: Optional[dict[str, Any]] = Field(
        default=None, description="JSON schema of the tool's arguments (optional)"
    )

    async def run(self) -> ToolResult:
        tool = DynamicTool(
            name=DYNAMIC_PREFIX + self.name.removeprefix(DYNAMIC_PREFIX),
            description=self.description,
            endpoint=self.endpoint,
            method=self.method,
        )
        if self.input_schema:
            tool.input_schema = self.input_schema
        self._extensions.register_tool(tool)
        return ToolResult(
            tool_name=self.TOOL_NAME,
            success=True,
            output=f"Tool {tool.name!r} created and registered. It will be available on next message.",
        )


class ListMyTools(ExtensionTool):
    TOOL_NAME = "list_my_tools"
    TOOL_DESCRIPTION = "List all dynamic tools you've created for yourself."

    async def run(self) -> ToolResult:
        tools = self._extensions.load_tools()
        if not tools:
            return ToolResult(tool_name=self.TOOL_NAME, success=True, output="No dynamic tools created yet.")
        lines = [
            f"- **{t.name}** [{t.type}] {'enabled' if t.enabled else 'disabled'}: "
            f"{t.description} (used {t.uses}x)"
            for t in tools
        ]
        return ToolResult(tool_name=self.TOOL_NAME, success=True, output="\n".join(lines))


class RemoveTool(ExtensionTool):
    TOOL_NAME = "remove_tool"
    TOOL_DESCRIPTION = "Disable a dynamic tool you created."

    name: str = Field(..., description="Tool name to disable", min_length=1)

    async def run(self) -> ToolResult:
        try:
            self._extensions.remove_tool(self.name)
        except ValueError as e:
            return ToolResult(tool_name=self.TOOL_NAME, success=False, errors=str(e))
        return ToolResult(tool_name=self.TOOL_NAME, success=True, output=f"Tool {self.name!r} disabled.")


class EvolvePrompt(ExtensionTool):
    TOOL_NAME = "evolve_prompt"
    TOOL_DESCRIPTION = """Add or update a section in your own system prompt.

Use this to give yourself new instructions, knowledge, or behavioral rules that persist across conversations.
"""

    name: str = Field(..., description="Section name (e.g. 'Code style preferences')", min_length=1)
    content: str = Field(..., description="The prompt content to add", min_length=1)
    priority: int = Field(default=5, description="Order in prompt (1=first, 10=last, default 5)", ge=1, le=10)

    async def run(self) -> ToolResult:
        self._extensions.save_prompt_patch(
            PromptPatch(name=self.name, content=self.content, priority=self.priority)
        )
        return ToolResult(
            tool_name=self.TOOL_NAME,
            success=True,
            output=f"Prompt section {self.name!r} saved. Will take effect on next system prompt refresh.",
        )
