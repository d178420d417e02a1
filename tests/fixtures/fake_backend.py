"""Scripted stand-in for the upstream OpenAI-compatible API."""

from __future__ import annotations

from typing import Any, AsyncIterator, Dict, List, Optional

from drain.application.provider.use_cases.inference import CompletionResult, Usage


class FakeCompletionBackend:
    """Answers every request with ``reply``.

    ``usage`` is ``(prompt_tokens, completion_tokens)``; pass None to mimic an
    upstream that reports no usage at all.
    """

    def __init__(
        self,
        reply: str = "Hello from the model",
        usage: Optional[tuple[int, int]] = (100, 50),
        *,
        error: Optional[Exception] = None,
    ) -> None:
        self.reply = reply
        self.usage = usage
        self.error = error
        self.requests: List[Dict[str, Any]] = []
        self.closed = False

    def _usage_dict(self) -> Optional[Dict[str, int]]:
        if self.usage is None:
            return None
        return {"prompt_tokens": self.usage[0], "completion_tokens": self.usage[1]}

    async def complete(self, body: Dict[str, Any]) -> CompletionResult:
        self.requests.append(body)
        if self.error is not None:
            raise self.error
        data: Dict[str, Any] = {
            "id": "chatcmpl-fake",
            "object": "chat.completion",
            "model": body.get("model"),
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": self.reply},
                    "finish_reason": "stop",
                }
            ],
        }
        usage = self._usage_dict()
        if usage is not None:
            data["usage"] = usage
        return CompletionResult(body=data, usage=Usage.from_openai(usage))

    async def stream(self, body: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        self.requests.append(body)
        if self.error is not None:
            raise self.error
        for word in self.reply.split(" "):
            yield {"choices": [{"index": 0, "delta": {"content": word + " "}}]}
        usage = self._usage_dict()
        if usage is not None:
            yield {"choices": [], "usage": usage}

    async def aclose(self) -> None:
        self.closed = True
