# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
PicoFlare: a chat-driven agent that orchestrates an LLM oracle and a toolbelt.
"""

from .agent import Agent
from .config import Settings, load_settings

__all__ = ["Agent", "Settings", "load_settings"]
