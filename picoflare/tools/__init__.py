# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
A module of Agent tools
"""

from pathlib import Path

from .base_tool import BaseTool, ToolContext, ToolDefinition, ToolRegistry
from .file_tools import EditFile, ListFiles, ReadFile, WriteFile
from .execute_command import ExecuteCommand
from .http_request import HttpRequest
from .cloud_api import CloudApi
from .skill_tools import CreateSkill
from .memory_tools import (
    LearnFact,
    LearnProcedure,
    RecallFacts,
    RecallMemory,
    SaveEpisode,
    SelfReflect,
    SetGoal,
    Tokenomics,
)
from .extension_tools import CreateTool, EvolvePrompt, ListMyTools, RemoveTool

toolkits: dict[str, list[type[BaseTool]]] = dict(
    workspace=[ReadFile, WriteFile, EditFile, ListFiles, ExecuteCommand],
    memory=[LearnFact, RecallFacts, SaveEpisode, LearnProcedure, RecallMemory],
    meta=[SetGoal, SelfReflect],
    extensions=[CreateTool, ListMyTools, RemoveTool, EvolvePrompt],
)

# Tools rebound to a sub-workspace when a subagent is confined to a folder
WORKSPACE_TOOL_NAMES = [t.TOOL_NAME for t in toolkits["workspace"]]


def workspace_tool_definitions(root: Path | str) -> list[ToolDefinition]:
    """File and shell tools rooted at ``root``."""
    workspace = Path(root)
    return [tool.definition(workspace=workspace) for tool in toolkits["workspace"]]
