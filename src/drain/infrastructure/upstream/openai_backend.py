"""OpenAI-compatible chat completion backend."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, Optional, Type
from types import TracebackType

import httpx

from ...application.provider.use_cases.inference import CompletionResult, Usage
from ..http.http_client import AsyncHttpClient

logger = logging.getLogger(__name__)


class OpenAICompatibleBackend:
    """Calls ``POST /chat/completions`` on an OpenAI-compatible API.

    Streaming requests ask the upstream to append a usage chunk so the actual
    cost can be computed from real token counts.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 120.0,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.http = AsyncHttpClient(
            base_url, timeout=timeout, headers=headers, transport=transport
        )

    async def complete(self, body: Dict[str, Any]) -> CompletionResult:
        payload = {**body, "stream": False}
        resp = await self.http.post("/chat/completions", json=payload)
        data = resp.json()
        return CompletionResult(body=data, usage=Usage.from_openai(data.get("usage")))

    async def stream(self, body: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        payload = {
            **body,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        async with self.http.stream_post("/chat/completions", json=payload) as resp:
            async for line in resp.aiter_lines():
                if not line.startswith("data:"):
                    continue
                data = line[len("data:"):].strip()
                if not data or data == "[DONE]":
                    continue
                try:
                    yield json.loads(data)
                except json.JSONDecodeError:
                    logger.warning("Skipping undecodable upstream chunk")

    async def aclose(self) -> None:
        await self.http.aclose()

    async def __aenter__(self) -> "OpenAICompatibleBackend":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_value: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        await self.aclose()
