# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
System prompt assembly.

The prompt is static instructions plus labelled sections rendered by optional
collaborators. A collaborator that is not configured contributes nothing, so
a bare assembler still yields a usable prompt.
"""

import logging

from datetime import datetime
from typing import Callable, Optional

from .skills import SkillsLoader
from ..cognition.memory import ContextBudget, Memory
from ..cognition.metacognition import MetaCognition
from ..cognition.evolution import ExtensionRegistry
from ..llm.metering import TokenLedger
from ..tools.base_tool import ToolRegistry

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

MAX_SECTION_CHARS = 8000

WHO_YOU_ARE = """## Who You Are
You are PicoFlare, a self-evolving agent that operates a cloud account and a local workspace.
You think, learn, remember, build infrastructure and extend your own toolbelt.
Keep replies short: lead with action, then report. Use bullet points, not paragraphs.
"""

OPERATING_PRINCIPLES = """## Operating Principles
1. **Act, don't describe**: use tools to do things rather than explaining how
2. **Learn actively**: when you discover something durable, use learn_fact or learn_procedure
3. **Delegate**: use subagent for a focused sub-task you need the result of now, spawn for long work that can report back later. Pass workspace to confine a subagent to a folder
4. **Minimise tokens**: keep replies concise and don't repeat what is already in memory
5. **Self-improve**: after complex tasks, use self_reflect to record what worked
6. **Be honest**: say when you can't do something or need clarification
"""

SUBAGENT_PROMPT = (
    "You are a subagent. Complete the given task independently using your tools.\n"
    "Provide a clear, concise summary of what you did. Be direct and efficient."
)


def _cap(text: str, limit: int = MAX_SECTION_CHARS) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "\n...(truncated)\n"


class ContextAssembler:
    """Builds the transcript's position-0 system message."""

    def __init__(
        self,
        memory: Optional[Memory] = None,
        meta: Optional[MetaCognition] = None,
        extensions: Optional[ExtensionRegistry] = None,
        ledger: Optional[TokenLedger] = None,
        skills: Optional[SkillsLoader] = None,
        memory_budget: Optional[ContextBudget] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.memory = memory
        self.meta = meta
        self.extensions = extensions
        self.ledger = ledger
        self.skills = skills
        self.memory_budget = memory_budget or ContextBudget()
        self.clock = clock

    def build(self, registry: ToolRegistry, agent_id: Optional[str] = None) -> str:
        """Render the full system prompt for one conversation.

        Args:
            registry: The tool snapshot the conversation will run with
            agent_id: Memory namespace of the conversation, if any
        """
        parts = [
            "# PicoFlare: Cognitive Cloud Agent\n\n",
            f"Time: {self.clock().strftime('%a, %d %b %Y %H:%M:%S')}\n\n",
            WHO_YOU_ARE,
            "\n",
            self._tools_section(registry),
        ]

        if self.skills is not None:
            skills = self.skills.load_all()
            if skills:
                parts.append(
                    "## Skills (Domain Knowledge)\n"
                    "The following skills shape how you approach specific domains. "
                    "Use them with your tools.\n\n"
                )
                parts.append(_cap(skills) + "\n\n")

        parts.append(OPERATING_PRINCIPLES + "\n")

        if self.memory is not None:
            parts.append("## Memory Context\n")
            parts.append(self.memory.for_agent(agent_id).build_context(self.memory_budget))
            parts.append("\n")

        if self.meta is not None:
            meta_context = self.meta.build_meta_context()
            if meta_context:
                parts.append("## Goals & Reflections\n")
                parts.append(_cap(meta_context))

        if self.extensions is not None:
            additions = self.extensions.build_prompt_additions()
            if additions:
                parts.append(_cap(additions))
            dynamic = self.extensions.enabled_tools()
            if dynamic:
                parts.append(f"## Dynamic Tools ({len(dynamic)} self-created)\n")
                for tool in dynamic:
                    parts.append(f"- **{tool.name}**: {tool.description} (used {tool.uses}x)\n")
                parts.append("\n")

        if self.ledger is not None:
            parts.append("## Token Budget\n")
            parts.append(self.ledger.budget_summary() + "\n")

        return "".join(parts)

    @staticmethod
    def build_subagent_prompt(workspace: Optional[str] = None) -> str:
        prompt = SUBAGENT_PROMPT
        if workspace:
            prompt += f"\n\nYou are working in the folder: {workspace} (paths are relative to this)."
        return prompt

    @staticmethod
    def _tools_section(registry: ToolRegistry) -> str:
        lines = ["## Tools Available\n"]
        for tool in registry:
            summary = tool.description.strip().splitlines()[0] if tool.description.strip() else ""
            lines.append(f"- **{tool.name}**: {summary}\n")
        lines.append("\n")
        return "".join(lines)
