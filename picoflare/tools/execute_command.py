# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import re
import asyncio
import logging

from typing import ClassVar, Optional
from pydantic import Field, PrivateAttr

from .file_tools import WorkspaceTool
from ..types.errors import AccessDenied
from ..types.tool_types import ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

MAX_OUTPUT_CHARS = 10000

DANGER_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"rm\s+-rf\s+/",
        r"sudo\s+",
        r"chmod\s+777",
        r">\s*/dev/",
        r"curl.*\|\s*sh",
        r"wget.*\|\s*sh",
        r"eval\s*\(",
        r"git\s+push.*--force",
        r"docker\s+run",
        r"kill\s+-9\s+1\b",
    )
]


def guard_command(command: str) -> None:
    """Raise AccessDenied if the command matches the deny list."""
    for pattern in DANGER_PATTERNS:
        if pattern.search(command):
            logger.warning(f"Blocked command matching {pattern.pattern!r}: {command[:100]}")
            raise AccessDenied("command blocked by safety guard")


class ExecuteCommand(WorkspaceTool):
    """Run a shell command in the workspace, guarded by a deny list."""

    TOOL_NAME: ClassVar[str] = "shell"
    TOOL_DESCRIPTION: ClassVar[
        str
    ] = """
Run a shell command in the workspace.

Use for builds, tests, git operations or system inspection. Output is the combined
stdout and stderr. Commands are killed after the timeout, and dangerous commands
(sudo, rm -rf /, piping downloads into sh, force pushes, ...) are blocked.
"""

    command: str = Field(..., description="Shell command to run", min_length=1)
    cwd: Optional[str] = Field(
        default=None,
        description="Working directory relative to the workspace (default: root)",
    )

    _timeout: float = PrivateAttr(default=60.0)
    _process: asyncio.subprocess.Process | None = PrivateAttr(default=None)

    async def run(self) -> ToolResult:
        try:
            guard_command(self.command)
            work_dir = self.resolve(self.cwd or ".")
        except AccessDenied as e:
            return ToolResult(tool_name=self.TOOL_NAME, success=False, errors=str(e))

        self._process = await asyncio.create_subprocess_exec(
            "sh",
            "-c",
            self.command,
            cwd=str(work_dir),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
        )

        try:
            stdout, _ = await asyncio.wait_for(self._process.communicate(), timeout=self._timeout)
            exit_error = None
            if self._process.returncode != 0:
                exit_error = f"exit status {self._process.returncode}"
        except asyncio.TimeoutError:
            self._process.kill()
            stdout, _ = await self._process.communicate()
            exit_error = f"command timed out after {self._timeout:.0f}s"
        except asyncio.CancelledError:
            self._process.kill()
            await self._process.wait()
            raise

        output = stdout.decode(errors="replace")
        if len(output) > MAX_OUTPUT_CHARS:
            output = output[:MAX_OUTPUT_CHARS] + f"\n...(truncated, {len(stdout)} total)"

        if exit_error is not None:
            return ToolResult(
                tool_name=self.TOOL_NAME,
                success=True,
                output=f"Exit error: {exit_error}\n\n{output}",
            )
        return ToolResult(tool_name=self.TOOL_NAME, success=True, output=output or "(no output)")
