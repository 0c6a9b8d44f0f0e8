# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import json
import logging

import httpx

from typing import Any, Optional
from pydantic import Field, PrivateAttr

from .base_tool import BaseTool
from ..types.tool_types import ToolResult

logger = logging.getLogger(__name__)
logger.setLevel(logging.INFO)

MAX_RESPONSE_CHARS = 15000


def _coerce_headers(headers: dict[str, Any] | str | None) -> dict[str, str]:
    if headers is None:
        return {}
    if isinstance(headers, str):
        try:
            headers = json.loads(headers)
        except json.JSONDecodeError:
            return {}
        if not isinstance(headers, dict):
            return {}
    return {k: v for k, v in headers.items() if isinstance(v, str)}


class HttpRequest(BaseTool):
    TOOL_NAME = "http_request"
    TOOL_DESCRIPTION = """Make an HTTP request from the agent's own machine.

Use for calling deployed services or public APIs. The response body is truncated
after 15000 characters. A JSON Content-Type is assumed when a body is sent without one.
"""

    url: str = Field(..., description="Full URL, e.g. https://example.workers.dev/", min_length=1)
    method: str = Field(default="GET", description="GET, POST, PUT, DELETE, PATCH (default GET)")
    body: Optional[str] = Field(default=None, description="Request body for POST/PUT (optional)")
    headers: dict[str, Any] | str | None = Field(
        default=None,
        description='JSON object of headers, e.g. {"Authorization": "Bearer ..."}',
    )

    _timeout: float = PrivateAttr(default=60.0)
    _transport: httpx.AsyncBaseTransport | None = PrivateAttr(default=None)

    async def run(self) -> ToolResult:
        headers = _coerce_headers(self.headers)
        if self.body and not any(k.lower() == "content-type" for k in headers):
            headers["Content-Type"] = "application/json"

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.request(
                    (self.method or "GET").upper(),
                    self.url,
                    content=self.body or None,
                    headers=headers,
                )
        except httpx.HTTPError as e:
            return ToolResult(
                tool_name=self.TOOL_NAME,
                success=False,
                errors=f"request failed: {e}",
            )

        text = response.text
        if len(text) > MAX_RESPONSE_CHARS:
            text = text[:MAX_RESPONSE_CHARS] + "\n...(truncated)"
        return ToolResult(
            tool_name=self.TOOL_NAME,
            success=True,
            output=f"Status: {response.status_code}\n{text}",
        )
