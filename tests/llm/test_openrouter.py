# Self-Improving Coding Agent
# Copyright (c) 2025 Maxime Robeyns
#
# This source code is licensed under the MIT license found in the
# LICENSE file in the root directory of this source tree.
import json
import httpx
import pytest

from openai import AsyncOpenAI

from picoflare.llm.providers import OpenRouterProvider
from picoflare.types.errors import OracleTransportError
from picoflare.types.llm_types import Message, StopReason, ToolCall


def completion_body(message: dict, finish_reason: str = "stop", **extra) -> dict:
    body = {
        "id": "gen-1",
        "object": "chat.completion",
        "created": 0,
        "model": "test/model",
        "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
        "usage": {"prompt_tokens": 12, "completion_tokens": 3, "total_tokens": 15},
    }
    body.update(extra)
    return body


def make_provider(handler) -> OpenRouterProvider:
    client = AsyncOpenAI(
        api_key="test-key",
        base_url="https://openrouter.test/api/v1",
        max_retries=0,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    return OpenRouterProvider(api_key="test-key", client=client)


class TestOpenRouterProvider:
    @pytest.mark.asyncio
    async def test_text_completion(self):
        requests = []

        def handler(request):
            requests.append(json.loads(request.content))
            return httpx.Response(200, json=completion_body({"role": "assistant", "content": "Hello!"}))

        provider = make_provider(handler)
        completion = await provider.create_completion(
            model="test/model", messages=[Message.system("sys"), Message.user("hi")]
        )

        assert completion.content == "Hello!"
        assert completion.is_final
        assert completion.stop_reason == StopReason.COMPLETE
        assert completion.usage.total_tokens == 15
        assert requests[0]["messages"] == [
            {"role": "system", "content": "sys"},
            {"role": "user", "content": "hi"},
        ]
        assert "tools" not in requests[0]

    @pytest.mark.asyncio
    async def test_tool_calls(self):
        requests = []
        catalog = [{"type": "function", "function": {"name": "read_file", "parameters": {"type": "object"}}}]

        def handler(request):
            requests.append(json.loads(request.content))
            message = {
                "role": "assistant",
                "content": None,
                "tool_calls": [
                    {
                        "id": "call_1",
                        "type": "function",
                        "function": {"name": "read_file", "arguments": '{"path": "a.txt"}'},
                    }
                ],
            }
            return httpx.Response(200, json=completion_body(message, finish_reason="tool_calls"))

        provider = make_provider(handler)
        history = [
            Message.user("read it"),
            Message.assistant(None, [ToolCall(id="call_0", name="list_files", arguments="{}")]),
            Message.tool_result(ToolCall(id="call_0", name="list_files"), "a.txt"),
        ]
        completion = await provider.create_completion(model="test/model", messages=history, tools=catalog)

        assert completion.content == ""
        assert completion.stop_reason == StopReason.TOOL_CALLS
        assert completion.tool_calls == [ToolCall(id="call_1", name="read_file", arguments='{"path": "a.txt"}')]
        assert requests[0]["tools"] == catalog
        assert requests[0]["messages"][1]["tool_calls"][0]["id"] == "call_0"
        assert requests[0]["messages"][2] == {
            "role": "tool",
            "content": "a.txt",
            "tool_call_id": "call_0",
            "name": "list_files",
        }

    @pytest.mark.asyncio
    async def test_missing_usage(self):
        def handler(request):
            body = completion_body({"role": "assistant", "content": "ok"})
            del body["usage"]
            return httpx.Response(200, json=body)

        completion = await make_provider(handler).create_completion(model="m", messages=[Message.user("x")])
        assert completion.usage.total_tokens == 0

    @pytest.mark.asyncio
    async def test_no_choices(self):
        def handler(request):
            return httpx.Response(200, json={"id": "gen-1", "choices": [], "model": "m"})

        with pytest.raises(OracleTransportError, match="no choices"):
            await make_provider(handler).create_completion(model="m", messages=[Message.user("x")])

    @pytest.mark.asyncio
    async def test_error_payload(self):
        def handler(request):
            return httpx.Response(200, json={"id": "gen-1", "choices": [], "error": {"message": "quota"}})

        with pytest.raises(OracleTransportError, match="quota"):
            await make_provider(handler).create_completion(model="m", messages=[Message.user("x")])

    @pytest.mark.asyncio
    async def test_http_error_is_wrapped(self):
        def handler(request):
            return httpx.Response(400, json={"error": {"message": "bad model"}})

        with pytest.raises(OracleTransportError, match="LLM request failed"):
            await make_provider(handler).create_completion(model="m", messages=[Message.user("x")])


class TestStopReasons:
    @pytest.mark.parametrize(
        "finish_reason,expected",
        [
            ("stop", StopReason.COMPLETE),
            ("tool_calls", StopReason.TOOL_CALLS),
            ("length", StopReason.LENGTH),
            ("error", StopReason.ERROR),
            (None, StopReason.COMPLETE),
        ],
    )
    def test_map_stop_reason(self, finish_reason, expected):
        assert OpenRouterProvider(api_key="k").map_stop_reason(finish_reason) == expected


@pytest.mark.uses_llm
class TestLiveOpenRouter:
    @pytest.mark.asyncio
    async def test_round_trip(self):
        from picoflare.config import load_settings

        settings = load_settings()
        if not settings.openrouter_api_key:
            pytest.skip("OPENROUTER_API_KEY is not set")

        provider = OpenRouterProvider(api_key=settings.openrouter_api_key, base_url=settings.base_url)
        completion = await provider.create_completion(
            model=settings.model,
            messages=[Message.user("Reply with the single word: pong")],
        )

        assert "pong" in completion.content.lower()
        assert completion.usage.total_tokens > 0
