from __future__ import annotations

import json
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, runtime_checkable

import httpx

from apicopilot.core.exceptions import UpstreamLLMError
from apicopilot.core.logger import setup_logger
from apicopilot.core.settings import Settings

logger = setup_logger(__name__)


@runtime_checkable
class ModelProvider(Protocol):
    """
    A streaming chat-completion source.

    `stream_chat` yields OpenAI-style `chat.completion.chunk` dicts whose
    `choices[0].delta` may carry `content` and/or `tool_calls` fragments, and
    whose `choices[0].finish_reason` marks the end of a generation phase.
    """

    def stream_chat(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        ...


class OpenAICompatibleProvider:
    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        api_key: Optional[str] = None,
        temperature: float = 0.1,
        max_tokens: Optional[int] = 2000,
        extra_headers: Optional[Dict[str, str]] = None,
        timeout_s: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.extra_headers = dict(extra_headers or {})
        self.timeout_s = timeout_s
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAICompatibleProvider":
        extra_headers: Dict[str, str] = {}
        if settings.UPSTREAM_REFERER:
            extra_headers["HTTP-Referer"] = settings.UPSTREAM_REFERER
        if settings.UPSTREAM_APP_TITLE:
            extra_headers["X-Title"] = settings.UPSTREAM_APP_TITLE
        return cls(
            base_url=settings.UPSTREAM_OPENAI_BASE,
            model=settings.UPSTREAM_MODEL_NAME,
            api_key=settings.UPSTREAM_OPENAI_API_KEY,
            temperature=settings.UPSTREAM_TEMPERATURE,
            max_tokens=settings.UPSTREAM_MAX_TOKENS,
            extra_headers=extra_headers,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", **self.extra_headers}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def build_payload(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "stream": True,
            "temperature": self.temperature,
        }
        if self.max_tokens:
            payload["max_tokens"] = self.max_tokens
        # Only advertise tools when there are some; empty lists upset some upstreams.
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        return payload

    async def stream_chat(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        payload = self.build_payload(messages, tools)
        logger.info(f"Streaming upstream payload for model '{self.model}' (tools={len(tools or [])})")

        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout_s, transport=self._transport
        ) as client:
            async with client.stream(
                "POST", "/chat/completions", json=payload, headers=self._headers()
            ) as resp:
                if resp.is_error:
                    body = (await resp.aread()).decode("utf-8", errors="replace")
                    logger.error(f"Upstream returned HTTP error {resp.status_code}: {body}")
                    raise UpstreamLLMError(f"Upstream returned HTTP {resp.status_code}: {body[:500]}")

                async for line in resp.aiter_lines():
                    if not line:
                        continue

                    # Upstream uses OpenAI-style SSE framing.
                    if line.strip() == "data: [DONE]":
                        break

                    if line.startswith("data:"):
                        data_str = line[len("data:"):].strip()
                        try:
                            parsed = json.loads(data_str)
                        except json.JSONDecodeError:
                            logger.warning(f"Failed to decode upstream SSE JSON line: {data_str}")
                            continue
                        if isinstance(parsed, dict) and parsed.get("error"):
                            raise UpstreamLLMError(f"Upstream stream error: {parsed['error']}")
                        yield parsed
