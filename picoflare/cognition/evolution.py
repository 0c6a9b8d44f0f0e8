# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Self-registered extensions: dynamic tools and system prompt patches.

Both are persisted so that they survive restarts. Dynamic tools only become
callable after the agent rebuilds its tool registry snapshot.
"""

import json
import logging

import httpx

from datetime import datetime
from typing import Any, Literal
from pydantic import BaseModel, Field

from ..storage.blob_store import BlobStore

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

DYNAMIC_TOOLS_KEY = "memory/evolution/tools.json"
PROMPT_PATCHES_KEY = "memory/evolution/prompt_patches.json"
DYNAMIC_PREFIX = "dyn_"
MAX_DYNAMIC_RESPONSE_CHARS = 8000


class DynamicTool(BaseModel):
    name: str  # always carries the dyn_ prefix
    description: str
    type: Literal["http"] = "http"
    endpoint: str
    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )
    created_at: datetime = Field(default_factory=datetime.now)
    created_by: str = "agent"
    enabled: bool = True
    uses: int = 0


class PromptPatch(BaseModel):
    name: str
    content: str
    priority: int = 5  # lower is inserted earlier
    enabled: bool = True
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class ExtensionRegistry:
    """Persistent catalog of the agent's self-defined tools and prompt sections."""

    def __init__(self, store: BlobStore, transport: httpx.AsyncBaseTransport | None = None):
        self.store = store
        self._transport = transport

    # Dynamic tools -----------------------------------------------------------

    def load_tools(self) -> list[DynamicTool]:
        return [DynamicTool.model_validate(t) for t in self.store.get_json(DYNAMIC_TOOLS_KEY, default=[]) or []]

    def _save_tools(self, tools: list[DynamicTool]) -> None:
        self.store.put_json(DYNAMIC_TOOLS_KEY, [t.model_dump(mode="json") for t in tools])

    def enabled_tools(self) -> list[DynamicTool]:
        return [t for t in self.load_tools() if t.enabled]

    def register_tool(self, tool: DynamicTool) -> DynamicTool:
        if not tool.name.startswith(DYNAMIC_PREFIX):
            tool.name = DYNAMIC_PREFIX + tool.name
        tool.enabled = True

        tools = self.load_tools()
        for i, existing in enumerate(tools):
            if existing.name == tool.name:
                tool.uses = existing.uses
                tools[i] = tool
                break
        else:
            tools.append(tool)

        logger.info(f"Registered dynamic tool {tool.name} ({tool.type})")
        self._save_tools(tools)
        return tool

    def remove_tool(self, name: str) -> None:
        """Disable a dynamic tool.

        Raises:
            ValueError: no tool with that name
        """
        tools = self.load_tools()
        for tool in tools:
            if tool.name in (name, DYNAMIC_PREFIX + name):
                tool.enabled = False
                self._save_tools(tools)
                return
        raise ValueError(f"tool {name!r} not found")

    def increment_use(self, name: str) -> None:
        tools = self.load_tools()
        for tool in tools:
            if tool.name == name:
                tool.uses += 1
                self._save_tools(tools)
                return

    async def call_http_tool(self, tool: DynamicTool, arguments: dict[str, Any]) -> str:
        method = (tool.method or "POST").upper()
        headers = {"Content-Type": "application/json", **tool.headers}
        body = json.dumps(arguments) if method in ("POST", "PUT", "PATCH") else None
        params = arguments if body is None else None

        async with httpx.AsyncClient(timeout=30.0, transport=self._transport) as client:
            response = await client.request(
                method, tool.endpoint, content=body, params=params, headers=headers
            )
        if response.status_code >= 400:
            raise RuntimeError(f"HTTP {response.status_code}: {response.text}")

        text = response.text
        if len(text) > MAX_DYNAMIC_RESPONSE_CHARS:
            text = text[:MAX_DYNAMIC_RESPONSE_CHARS] + "\n...(truncated)"
        return text

    # Prompt patches ----------------------------------------------------------

    def load_prompt_patches(self) -> list[PromptPatch]:
        return [PromptPatch.model_validate(p) for p in self.store.get_json(PROMPT_PATCHES_KEY, default=[]) or []]

    def _save_prompt_patches(self, patches: list[PromptPatch]) -> None:
        self.store.put_json(PROMPT_PATCHES_KEY, [p.model_dump(mode="json") for p in patches])

    def save_prompt_patch(self, patch: PromptPatch) -> PromptPatch:
        patches = self.load_prompt_patches()
        patch.enabled = True
        patch.updated_at = datetime.now()
        for i, existing in enumerate(patches):
            if existing.name == patch.name:
                patch.created_at = existing.created_at
                patches[i] = patch
                break
        else:
            patches.append(patch)
        self._save_prompt_patches(patches)
        return patch

    def remove_prompt_patch(self, name: str) -> None:
        patches = self.load_prompt_patches()
        for patch in patches:
            if patch.name == name:
                patch.enabled = False
                self._save_prompt_patches(patches)
                return
        raise ValueError(f"patch {name!r} not found")

    def build_prompt_additions(self) -> str:
        active = sorted(
            (p for p in self.load_prompt_patches() if p.enabled), key=lambda p: p.priority
        )
        if not active:
            return ""
        out = "## Self-Defined Extensions\n"
        for patch in active:
            out += f"### {patch.name}\n{patch.content}\n\n"
        return out
