# FILE: test_unit_upstream_llm.py

import json
from typing import List

import httpx
import pytest

from apicopilot.core.exceptions import UpstreamLLMError
from apicopilot.core.settings import Settings
from apicopilot.services.upstream_llm import ModelProvider, OpenAICompatibleProvider


def _sse(*payloads) -> bytes:
    lines: List[str] = []
    for p in payloads:
        lines.append(p if isinstance(p, str) else f"data: {json.dumps(p)}")
        lines.append("")
    return "\n".join(lines).encode("utf-8")


def _provider(handler, **kwargs) -> OpenAICompatibleProvider:
    return OpenAICompatibleProvider(
        base_url="http://llm.test/v1/",
        model="test-model",
        api_key="sk-test",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_provider_satisfies_protocol():
    assert isinstance(_provider(lambda r: httpx.Response(200)), ModelProvider)


def test_build_payload_only_advertises_tools_when_present():
    provider = _provider(lambda r: httpx.Response(200))
    messages = [{"role": "user", "content": "hi"}]

    plain = provider.build_payload(messages)
    assert plain == {
        "model": "test-model",
        "messages": messages,
        "stream": True,
        "temperature": 0.1,
        "max_tokens": 2000,
    }

    tools = [{"type": "function", "function": {"name": "ping", "parameters": {}}}]
    with_tools = provider.build_payload(messages, tools)
    assert with_tools["tools"] == tools
    assert with_tools["tool_choice"] == "auto"

    assert "tools" not in provider.build_payload(messages, [])


def test_from_settings_builds_headers():
    provider = OpenAICompatibleProvider.from_settings(
        Settings(
            UPSTREAM_OPENAI_API_KEY="sk-live",
            UPSTREAM_REFERER="https://shop.test",
            UPSTREAM_APP_TITLE="Shop Copilot",
        )
    )
    assert provider.is_configured is True
    assert provider.extra_headers == {"HTTP-Referer": "https://shop.test", "X-Title": "Shop Copilot"}
    assert provider.model == "anthropic/claude-3.5-sonnet"

    assert OpenAICompatibleProvider.from_settings(Settings(UPSTREAM_OPENAI_API_KEY=None)).is_configured is False


@pytest.mark.asyncio
async def test_stream_chat_decodes_chunks_until_done():
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        body = _sse(
            {"choices": [{"delta": {"content": "Hel"}}]},
            ": keep-alive comment",
            "data: {not json",
            {"choices": [{"delta": {"content": "lo"}}]},
            "data: [DONE]",
            {"choices": [{"delta": {"content": "ignored"}}]},
        )
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    provider = _provider(handler)
    chunks = [c async for c in provider.stream_chat([{"role": "user", "content": "hi"}])]

    assert [c["choices"][0]["delta"]["content"] for c in chunks] == ["Hel", "lo"]
    request = seen[0]
    assert str(request.url) == "http://llm.test/v1/chat/completions"
    assert request.headers["authorization"] == "Bearer sk-test"
    assert json.loads(request.content)["stream"] is True


@pytest.mark.asyncio
async def test_stream_chat_raises_on_http_error():
    provider = _provider(lambda r: httpx.Response(401, json={"error": "bad key"}))

    with pytest.raises(UpstreamLLMError) as exc:
        async for _ in provider.stream_chat([{"role": "user", "content": "hi"}]):
            pass
    assert "401" in str(exc.value)


@pytest.mark.asyncio
async def test_stream_chat_raises_on_in_band_error():
    provider = _provider(lambda r: httpx.Response(200, content=_sse({"error": {"message": "overloaded"}})))

    with pytest.raises(UpstreamLLMError):
        async for _ in provider.stream_chat([{"role": "user", "content": "hi"}]):
            pass
