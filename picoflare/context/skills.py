# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Skills are markdown files of domain knowledge (how to behave), as opposed to
tools (what can be executed). Each lives at ``<workspace>/skills/<name>/SKILL.md``
with an optional YAML frontmatter block.
"""

import re
import logging

import yaml

from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

FRONTMATTER_RE = re.compile(r"^---\r?\n(.*?)\r?\n---\r?\n*", re.DOTALL)


def split_frontmatter(text: str) -> tuple[dict[str, Any], str]:
    """Split a SKILL.md into its parsed frontmatter and body."""
    match = FRONTMATTER_RE.match(text)
    if not match:
        return {}, text
    try:
        meta = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as e:
        logger.warning(f"Ignoring unreadable skill frontmatter: {e}")
        meta = {}
    if not isinstance(meta, dict):
        meta = {}
    return meta, text[match.end():]


class SkillsLoader:
    def __init__(self, workspace: Path | str | None):
        self.skills_dir = Path(workspace).resolve() / "skills" if workspace else None

    def load_all(self) -> str:
        """Concatenate every skill body under a ``### Skill: <name>`` header."""
        if self.skills_dir is None or not self.skills_dir.is_dir():
            return ""

        parts = []
        for entry in sorted(self.skills_dir.iterdir(), key=lambda p: p.name):
            skill_file = entry / "SKILL.md"
            if not entry.is_dir() or not skill_file.is_file():
                continue
            try:
                _, body = split_frontmatter(skill_file.read_text())
            except OSError as e:
                logger.warning(f"Could not read skill {entry.name}: {e}")
                continue
            if body.strip():
                parts.append(f"### Skill: {entry.name}\n\n{body}")
        return "\n\n---\n\n".join(parts)
