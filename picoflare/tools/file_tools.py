# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import os
import logging

from pathlib import Path
from pydantic import Field, PrivateAttr

from .base_tool import BaseTool
from ..types.errors import AccessDenied, WorkspaceEscape
from ..types.tool_types import ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

MAX_READ_CHARS = 12000


def resolve_path(workspace: Path | str, path: str) -> Path:
    """
    Resolve ``path`` against the workspace root, following symlinks.

    Raises:
        AccessDenied: the resolved location is outside the workspace
    """
    root = Path(workspace).resolve()
    candidate = Path(path)
    if not candidate.is_absolute():
        candidate = root / candidate
    resolved = candidate.resolve()
    if resolved != root and root not in resolved.parents:
        raise AccessDenied(f"access denied: path {path!r} is outside workspace")
    return resolved


def resolve_sub_workspace(workspace: Path | str, sub_path: str) -> Path:
    """
    Join ``sub_path`` onto the workspace and check containment, both of the
    normalised path and of its target once symlinks are followed.

    Raises:
        WorkspaceEscape: the path, or what it links to, leaves the workspace
    """
    root = os.path.abspath(workspace)
    joined = os.path.normpath(os.path.join(root, sub_path))
    rel = os.path.relpath(joined, root)
    if rel == ".." or rel.startswith(".." + os.sep) or os.path.isabs(rel):
        raise WorkspaceEscape(sub_path)
    real_root = Path(root).resolve()
    real = Path(joined).resolve()
    if real != real_root and real_root not in real.parents:
        raise WorkspaceEscape(sub_path)
    return Path(joined)


class WorkspaceTool(BaseTool):
    """Base for tools that operate inside a bound workspace root."""

    _workspace: Path = PrivateAttr(default_factory=Path.cwd)

    def resolve(self, path: str) -> Path:
        return resolve_path(self._workspace, path)


class ReadFile(WorkspaceTool):
    TOOL_NAME = "read_file"
    TOOL_DESCRIPTION = """Read a file from the workspace.

Use to inspect source code, configs or any project file. Long files are truncated.
"""

    path: str = Field(
        ...,
        description="File path relative to the workspace (e.g. 'src/main.py')",
        min_length=1,
    )

    async def run(self) -> ToolResult:
        try:
            data = self.resolve(self.path).read_bytes()
            content = data.decode(errors="replace")
            if len(content) > MAX_READ_CHARS:
                content = content[:MAX_READ_CHARS] + f"\n...(truncated, {len(data)} total bytes)"
            return ToolResult(tool_name=self.TOOL_NAME, success=True, output=content)
        except AccessDenied as e:
            return ToolResult(tool_name=self.TOOL_NAME, success=False, errors=str(e))
        except OSError as e:
            return ToolResult(
                tool_name=self.TOOL_NAME,
                success=False,
                errors=f"read {self.path}: {e.strerror or e}",
            )


class WriteFile(WorkspaceTool):
    TOOL_NAME = "write_file"
    TOOL_DESCRIPTION = """Write or create a file in the workspace.

Parent directories are created as needed. The file is overwritten if it exists.
"""

    path: str = Field(..., description="File path relative to the workspace", min_length=1)
    content: str = Field(..., description="Full file content to write")

    async def run(self) -> ToolResult:
        try:
            target = self.resolve(self.path)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(self.content)
            return ToolResult(
                tool_name=self.TOOL_NAME,
                success=True,
                output=f"Written {self.path} ({len(self.content.encode())} bytes)",
            )
        except AccessDenied as e:
            return ToolResult(tool_name=self.TOOL_NAME, success=False, errors=str(e))
        except OSError as e:
            return ToolResult(
                tool_name=self.TOOL_NAME,
                success=False,
                errors=f"write {self.path}: {e.strerror or e}",
            )


class EditFile(WorkspaceTool):
    TOOL_NAME = "edit_file"
    TOOL_DESCRIPTION = """Edit a file by replacing exact text.

old_text must appear exactly once in the file. Use for surgical changes without rewriting the whole file.
"""

    path: str = Field(..., description="File path relative to the workspace", min_length=1)
    old_text: str = Field(..., description="Exact text to find (must be unique)", min_length=1)
    new_text: str = Field(..., description="Replacement text")

    async def run(self) -> ToolResult:
        try:
            target = self.resolve(self.path)
            content = target.read_text()
        except AccessDenied as e:
            return ToolResult(tool_name=self.TOOL_NAME, success=False, errors=str(e))
        except OSError as e:
            return ToolResult(
                tool_name=self.TOOL_NAME,
                success=False,
                errors=f"read {self.path}: {e.strerror or e}",
            )

        count = content.count(self.old_text)
        if count == 0:
            return ToolResult(
                tool_name=self.TOOL_NAME,
                success=False,
                errors=f"old_text not found in {self.path}",
            )
        if count > 1:
            return ToolResult(
                tool_name=self.TOOL_NAME,
                success=False,
                errors=f"old_text appears {count} times in {self.path}, it must be unique",
            )

        target.write_text(content.replace(self.old_text, self.new_text, 1))
        return ToolResult(
            tool_name=self.TOOL_NAME,
            success=True,
            output=(
                f"Edited {self.path}: replaced {len(self.old_text)} chars "
                f"with {len(self.new_text)} chars"
            ),
        )


class ListFiles(WorkspaceTool):
    TOOL_NAME = "list_files"
    TOOL_DESCRIPTION = """List files and directories in the workspace.

Directories are shown with a trailing '/', files with their size in bytes.
"""

    path: str = Field(
        default=".",
        description="Directory relative to the workspace (empty = root)",
    )

    async def run(self) -> ToolResult:
        path = self.path or "."
        try:
            directory = self.resolve(path)
            lines = []
            for entry in sorted(directory.iterdir(), key=lambda p: p.name):
                if entry.is_dir():
                    lines.append(f"{entry.name}/")
                else:
                    lines.append(f"{entry.name} ({entry.stat().st_size} bytes)")
            return ToolResult(
                tool_name=self.TOOL_NAME,
                success=True,
                output="\n".join(lines) if lines else "(empty directory)",
            )
        except AccessDenied as e:
            return ToolResult(tool_name=self.TOOL_NAME, success=False, errors=str(e))
        except OSError as e:
            return ToolResult(
                tool_name=self.TOOL_NAME,
                success=False,
                errors=f"list {path}: {e.strerror or e}",
            )
