# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import logging

import yaml

from pydantic import Field

from .file_tools import WorkspaceTool
from ..types.errors import AccessDenied
from ..types.tool_types import ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)


def normalise_skill_name(name: str) -> str:
    return name.strip().replace(" ", "-").lower()


class CreateSkill(WorkspaceTool):
    TOOL_NAME = "create_skill"
    TOOL_DESCRIPTION = """Create a new skill: domain knowledge loaded into your context.

Use when the user asks you to create a specialised agent (e.g. 'Next.js specialist').
Writes skills/<name>/SKILL.md in the workspace; it is loaded into your context on the next message.
Use kebab-case for the name (e.g. nextjs-specialist).
"""

    name: str = Field(..., description="Skill name in kebab-case (e.g. nextjs-specialist)", min_length=1)
    description: str = Field(..., description="Short description for the skill (used in frontmatter)")
    content: str = Field(
        ...,
        description="Markdown body: instructions, guidelines and workflows. No frontmatter, it is added automatically.",
    )

    async def run(self) -> ToolResult:
        name = normalise_skill_name(self.name)
        if not name:
            return ToolResult(tool_name=self.TOOL_NAME, success=False, errors="name is required")

        frontmatter = yaml.safe_dump(
            {"name": name, "description": self.description}, sort_keys=False
        )
        rel_path = f"skills/{name}/SKILL.md"
        try:
            target = self.resolve(rel_path)
        except AccessDenied as e:
            return ToolResult(tool_name=self.TOOL_NAME, success=False, errors=str(e))

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(f"---\n{frontmatter}---\n\n{self.content.strip()}")
        return ToolResult(
            tool_name=self.TOOL_NAME,
            success=True,
            output=f"Skill {name!r} created at {rel_path}. It will be loaded into context on your next message.",
        )
