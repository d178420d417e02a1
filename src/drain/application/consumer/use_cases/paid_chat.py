"""Consumer-side paid chat: sign a voucher for the estimate, send it, reconcile."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Protocol

from pydantic import BaseModel

from ....domain.entities import Voucher
from ....domain.errors import ModelNotSupported
from ....domain.units import parse_usdc
from ...provider.dtos import PricingResponseDTO
from ...provider.use_cases.pricing import (
    ModelPricing,
    calculate_cost,
    estimate_input_tokens,
)
from ...shared.voucher_payloads import DrainReceipt
from .channel_client import ConsumerChannelClient

logger = logging.getLogger(__name__)

DEFAULT_EXPECTED_OUTPUT_TOKENS = 100
DEFAULT_BUFFER_PERCENT = 120


class ProviderApi(Protocol):
    async def get_pricing(self) -> PricingResponseDTO:
        ...

    async def chat_completion(self, voucher: Voucher, body: Dict[str, Any]) -> Any:
        ...


class PaidChatResponse(BaseModel):
    body: Dict[str, Any]
    voucher: Voucher
    receipt: Optional[DrainReceipt] = None


class PaidChatClient:
    """Pays for chat completions out of one channel."""

    def __init__(
        self,
        channel_client: ConsumerChannelClient,
        provider_api: ProviderApi,
        *,
        buffer_percent: int = DEFAULT_BUFFER_PERCENT,
    ):
        self.channel_client = channel_client
        self.provider_api = provider_api
        self.buffer_percent = buffer_percent
        self._pricing: Optional[PricingResponseDTO] = None

    async def refresh_pricing(self) -> PricingResponseDTO:
        self._pricing = await self.provider_api.get_pricing()
        return self._pricing

    async def model_pricing(self, model: str) -> ModelPricing:
        pricing = self._pricing or await self.refresh_pricing()
        price = pricing.models.get(model)
        if price is None:
            raise ModelNotSupported(f"Provider does not price model '{model}'")
        return ModelPricing(
            input_per_k=parse_usdc(price.input_per_1k_tokens),
            output_per_k=parse_usdc(price.output_per_1k_tokens),
        )

    async def estimate_cost(self, body: Dict[str, Any]) -> int:
        pricing = await self.model_pricing(body["model"])
        output_tokens = body.get("max_tokens") or DEFAULT_EXPECTED_OUTPUT_TOKENS
        base = calculate_cost(
            pricing, estimate_input_tokens(body["messages"]), output_tokens
        )
        # ceiling of base * buffer / 100
        return -(-base * self.buffer_percent // 100)

    async def chat(self, channel_id: str, body: Dict[str, Any]) -> PaidChatResponse:
        """Sign for ``provider_charged + estimate`` and send the request.

        The voucher never goes below the previous one; when it already covers
        the estimate the same amount is re-signed under the next nonce.
        """
        estimate = await self.estimate_cost(body)
        spending = self.channel_client.get_spending(channel_id)
        target = max(spending.cumulative_spend, spending.provider_charged + estimate)
        voucher = await self.channel_client.sign_voucher(channel_id, target, target=True)

        response = await self.provider_api.chat_completion(voucher, body)
        if response.receipt is not None:
            await self.channel_client.reconcile(channel_id, response.receipt.total)
            logger.info(
                "Paid %d on %s (total %d, remaining %d)",
                response.receipt.cost,
                channel_id,
                response.receipt.total,
                response.receipt.remaining,
            )
        return PaidChatResponse(body=response.body, voucher=voucher, receipt=response.receipt)
