"""Public pricing and model listing routes (Provider)."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from ....application.provider.dtos import ModelPriceDTO, PricingResponseDTO
from ....application.provider.use_cases.pricing import PricingService
from ....application.provider.use_cases.voucher_ledger import VoucherLedgerService
from ....domain.units import USDC_DECIMALS, format_usdc
from ..dependencies import get_pricing_service, get_voucher_ledger_service

router = APIRouter(tags=["pricing"])


@router.get("/pricing", response_model=PricingResponseDTO, response_model_by_alias=True)
async def get_pricing(
    pricing_service: PricingService = Depends(get_pricing_service),
    ledger: VoucherLedgerService = Depends(get_voucher_ledger_service),
) -> PricingResponseDTO:
    """Per-model prices in USDC per 1K tokens."""
    table = pricing_service.table
    return PricingResponseDTO(
        provider=ledger.provider_address,
        chain_id=ledger.domain.chain_id,
        currency="USDC",
        decimals=USDC_DECIMALS,
        models={
            model: ModelPriceDTO(
                input_per_1k_tokens=format_usdc(price.input_per_k),
                output_per_1k_tokens=format_usdc(price.output_per_k),
            )
            for model, price in table.models.items()
        },
    )


@router.get("/models")
async def list_models(
    pricing_service: PricingService = Depends(get_pricing_service),
) -> Dict[str, Any]:
    """OpenAI-style model list."""
    return {
        "object": "list",
        "data": [
            {"id": model, "object": "model", "owned_by": "drain-provider"}
            for model in pricing_service.table.model_ids()
        ],
    }
