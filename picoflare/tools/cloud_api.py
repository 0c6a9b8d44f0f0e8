# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import json
import logging

import httpx

from typing import Literal, Optional
from pydantic import Field, PrivateAttr

from .base_tool import BaseTool
from .http_request import MAX_RESPONSE_CHARS
from ..types.tool_types import ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

CLOUDFLARE_API_BASE = "https://api.cloudflare.com/client/v4"


class CloudApi(BaseTool):
    """Relay to the cloud provider's account-scoped REST API."""

    TOOL_NAME = "cloud_api"
    TOOL_DESCRIPTION = """Call any Cloudflare REST API endpoint for the configured account.

The path is relative to /accounts/{account_id}/. For example method=GET, path=workers/scripts
lists workers; path=r2/buckets lists buckets; path=storage/kv/namespaces lists KV namespaces.
"""

    method: Literal["GET", "POST", "PUT", "DELETE", "PATCH"] = Field(
        ..., description="HTTP method: GET, POST, PUT, DELETE, PATCH"
    )
    path: str = Field(
        ...,
        description="API path relative to /accounts/{account_id}/ (e.g. 'workers/scripts')",
        min_length=1,
    )
    body: Optional[str] = Field(default=None, description="JSON body for POST/PUT requests (optional)")

    _account_id: str = PrivateAttr(default="")
    _api_token: str = PrivateAttr(default="")
    _base_url: str = PrivateAttr(default=CLOUDFLARE_API_BASE)
    _transport: httpx.AsyncBaseTransport | None = PrivateAttr(default=None)

    def endpoint(self) -> str:
        return f"{self._base_url}/accounts/{self._account_id}/{self.path.lstrip('/')}"

    async def run(self) -> ToolResult:
        if not self._account_id or not self._api_token:
            return ToolResult(
                tool_name=self.TOOL_NAME,
                success=False,
                errors="cloud credentials are not configured",
            )

        payload = None
        if self.body:
            try:
                payload = json.loads(self.body)
            except json.JSONDecodeError as e:
                return ToolResult(
                    tool_name=self.TOOL_NAME,
                    success=False,
                    errors=f"body is not valid JSON: {e}",
                )

        try:
            async with httpx.AsyncClient(timeout=60.0, transport=self._transport) as client:
                response = await client.request(
                    self.method,
                    self.endpoint(),
                    json=payload,
                    headers={"Authorization": f"Bearer {self._api_token}"},
                )
        except httpx.HTTPError as e:
            return ToolResult(tool_name=self.TOOL_NAME, success=False, errors=f"request failed: {e}")

        try:
            text = json.dumps(response.json(), indent=2)
        except ValueError:
            text = response.text
        if len(text) > MAX_RESPONSE_CHARS:
            text = text[:MAX_RESPONSE_CHARS] + "\n...(truncated)"
        return ToolResult(
            tool_name=self.TOOL_NAME,
            success=response.is_success,
            output=f"Status: {response.status_code}\n{text}",
            errors=None if response.is_success else f"Status: {response.status_code}\n{text}",
        )
