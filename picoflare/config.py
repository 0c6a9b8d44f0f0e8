# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
"""
Runtime settings, read from the environment (and a ``.env`` file if present).
"""

import os
import logging

from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "moonshotai/kimi-k2.5"
DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"


class Settings(BaseModel):
    openrouter_api_key: str = ""
    model: str = DEFAULT_MODEL
    base_url: str = DEFAULT_BASE_URL
    workspace: Optional[Path] = None
    data_dir: Path = Field(default_factory=lambda: Path.home() / ".picoflare")
    cloudflare_account_id: str = ""
    cloudflare_api_token: str = ""
    log_level: str = "INFO"

    # Loop limits
    max_iterations: int = Field(default=24, ge=1)
    agent_timeout: float = Field(default=300.0, gt=0)
    subagent_max_iterations: int = Field(default=20, ge=1)
    subagent_timeout_default: float = Field(default=180.0, gt=0)
    subagent_timeout_max: float = Field(default=600.0, gt=0)
    spawn_timeout_default: float = Field(default=300.0, gt=0)

    # Sessions
    max_session_messages: int = Field(default=50, ge=1)
    refresh_interval: int = Field(default=15, ge=1)
    tracker_max_tasks: int = Field(default=200, ge=1)

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.upper()

    @property
    def has_cloudflare(self) -> bool:
        return bool(self.cloudflare_account_id and self.cloudflare_api_token)


ENV_VARS = {
    "OPENROUTER_API_KEY": "openrouter_api_key",
    "PICOFLARE_MODEL": "model",
    "PICOFLARE_BASE_URL": "base_url",
    "PICOFLARE_WORKSPACE": "workspace",
    "PICOFLARE_DATA_DIR": "data_dir",
    "CLOUDFLARE_ACCOUNT_ID": "cloudflare_account_id",
    "CLOUDFLARE_API_TOKEN": "cloudflare_api_token",
    "LOG_LEVEL": "log_level",
}


def load_settings(env_file: Optional[str] = None, **overrides) -> Settings:
    """Build settings from ``.env`` and the environment; explicit overrides win."""
    load_dotenv(env_file)
    values = {}
    for env_key, field in ENV_VARS.items():
        value = os.getenv(env_key)
        if value:
            values[field] = value
    values.update(overrides)
    return Settings(**values)
