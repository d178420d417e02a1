"""Paid inference: ties a voucher to one metered upstream request.

Flow per request: estimate a conservative cost and pre-authorize the voucher,
call the upstream model, compute the actual cost from real usage, and settle
exactly once. If the voucher turns out not to cover the actual cost the
request fails and nothing is billed.
"""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field

from ....domain.entities import Voucher
from ....domain.errors import DrainError
from ...shared.voucher_payloads import ERROR_HEADER, DrainReceipt
from ..dtos import Authorization, ChargeReceipt
from .pricing import (
    ModelPricing,
    PricingService,
    calculate_cost,
    estimate_input_tokens,
    estimate_preauth_cost,
    estimate_tokens,
)
from .voucher_ledger import VoucherLedgerService

logger = logging.getLogger(__name__)


class ChatCompletionRequest(BaseModel):
    """OpenAI-style chat request. Unknown fields are forwarded upstream as-is."""

    model_config = ConfigDict(extra="allow")

    model: str = Field(..., min_length=1)
    messages: List[Dict[str, Any]] = Field(..., min_length=1)
    stream: bool = False
    max_tokens: Optional[int] = Field(None, gt=0)

    def upstream_body(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class Usage(BaseModel):
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None

    @classmethod
    def from_openai(cls, usage: Optional[Dict[str, Any]]) -> "Usage":
        if not usage:
            return cls()
        return cls(
            input_tokens=usage.get("prompt_tokens"),
            output_tokens=usage.get("completion_tokens"),
        )


class CompletionResult(BaseModel):
    body: Dict[str, Any]
    usage: Usage = Field(default_factory=Usage)


class CompletionBackend(Protocol):
    """The metered upstream service (an OpenAI-compatible API)."""

    async def complete(self, body: Dict[str, Any]) -> CompletionResult:
        ...

    def stream(self, body: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        ...


class PaidRequest(BaseModel):
    """A pre-authorized request waiting for the upstream call."""

    request: ChatCompletionRequest
    pricing: ModelPricing
    authorization: Authorization


class PaidCompletion(BaseModel):
    body: Dict[str, Any]
    receipt: DrainReceipt


def _to_receipt(charge: ChargeReceipt) -> DrainReceipt:
    return DrainReceipt(
        channel_id=charge.channel_id,
        cost=charge.cost,
        total=charge.total_charged,
        remaining=charge.remaining,
    )


def _content_of(body: Dict[str, Any]) -> str:
    parts: List[str] = []
    for choice in body.get("choices") or []:
        message = choice.get("message") or {}
        content = message.get("content")
        if isinstance(content, str):
            parts.append(content)
    return "".join(parts)


class InferenceOrchestrator:
    """Runs pre-auth, the upstream call and settlement for chat completions."""

    def __init__(
        self,
        ledger: VoucherLedgerService,
        pricing_service: PricingService,
        backend: CompletionBackend,
    ):
        self.ledger = ledger
        self.pricing_service = pricing_service
        self.backend = backend

    async def authorize(
        self, voucher: Voucher, request: ChatCompletionRequest
    ) -> PaidRequest:
        """Price the request and pre-authorize the voucher for the estimate.

        Raises:
            ModelNotSupported: If no pricing exists for the model.
            DrainError: Whatever rejected the voucher.
        """
        pricing = self.pricing_service.get_pricing(request.model)
        estimate = estimate_preauth_cost(pricing, request.messages, request.max_tokens)
        authorization = await self.ledger.preauthorize(voucher, estimate)
        return PaidRequest(request=request, pricing=pricing, authorization=authorization)

    def actual_cost(
        self, paid: PaidRequest, usage: Usage, output_text: str
    ) -> int:
        input_tokens = usage.input_tokens
        if not input_tokens:
            input_tokens = estimate_input_tokens(paid.request.messages)
        output_tokens = usage.output_tokens
        if not output_tokens:
            output_tokens = estimate_tokens(output_text)
        return calculate_cost(paid.pricing, input_tokens, output_tokens)

    async def complete(self, paid: PaidRequest) -> PaidCompletion:
        """Non-streaming call followed by settlement.

        Raises:
            InsufficientFundsPost: The work was done but is not billed.
        """
        result = await self.backend.complete(paid.request.upstream_body())
        cost = self.actual_cost(paid, result.usage, _content_of(result.body))
        charge = await self.ledger.settle(paid.authorization, cost)
        return PaidCompletion(body=result.body, receipt=_to_receipt(charge))

    async def stream(self, paid: PaidRequest) -> AsyncIterator[str]:
        """Yield SSE lines; the receipt follows ``[DONE]`` as comment lines."""
        usage = Usage()
        content: List[str] = []
        async for chunk in self.backend.stream(paid.request.upstream_body()):
            for choice in chunk.get("choices") or []:
                delta = (choice.get("delta") or {}).get("content")
                if isinstance(delta, str):
                    content.append(delta)
            if chunk.get("usage"):
                usage = Usage.from_openai(chunk["usage"])
            yield f"data: {json.dumps(chunk)}\n\n"

        cost = self.actual_cost(paid, usage, "".join(content))
        yield "data: [DONE]\n\n"
        try:
            charge = await self.ledger.settle(paid.authorization, cost)
        except DrainError as e:
            logger.info(
                "Streamed request not billed: %s (channel %s)",
                e.code,
                paid.authorization.voucher.channel_id,
            )
            yield f": {ERROR_HEADER}: {e.code}\n"
            return
        yield _to_receipt(charge).to_sse_trailer()
