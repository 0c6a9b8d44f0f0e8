# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""Exception taxonomy shared by the agent loop, tools and delegation."""


class PicoFlareError(Exception):
    """Base class for all agent errors."""


class OracleTransportError(PicoFlareError):
    """The LLM call itself failed (network, decode, non-2xx, empty choices)."""


class ToolDispatchError(PicoFlareError):
    """Raised at the dispatch boundary before a handler runs."""


class UnknownTool(ToolDispatchError):
    def __init__(self, name: str):
        super().__init__(f"unknown tool: {name}")
        self.name = name


class InvalidArguments(ToolDispatchError):
    def __init__(self, name: str, reason: str):
        super().__init__(f"invalid arguments for {name}: {reason}")
        self.name = name
        self.reason = reason


class HandlerExecutionError(PicoFlareError):
    """A tool's own operation failed."""


class AccessDenied(PicoFlareError):
    """Workspace path escape or a blocked shell command."""


class WorkspaceEscape(AccessDenied):
    """A requested sub-workspace resolves outside the parent workspace."""

    def __init__(self, sub_path: str):
        super().__init__(f"workspace {sub_path!r} is outside main workspace")
        self.sub_path = sub_path
