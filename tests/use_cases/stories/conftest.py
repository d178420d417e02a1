"""Fixtures for end-to-end stories: a provider app served in-process over ASGI."""

from __future__ import annotations

from typing import AsyncGenerator

import httpx
import pytest
from fastapi import FastAPI

from drain.api.provider_api.dependencies import (
    get_inference_orchestrator,
    get_pricing_service,
    get_provider_settings,
    get_voucher_ledger_service,
)
from drain.api.provider_api.routers import admin, completions, pricing
from drain.application.consumer.use_cases.channel_client import ConsumerChannelClient
from drain.application.consumer.use_cases.paid_chat import PaidChatClient
from drain.application.provider.use_cases.inference import InferenceOrchestrator
from drain.application.provider.use_cases.pricing import (
    ModelPricing,
    PricingService,
    PricingTable,
)
from drain.application.provider.use_cases.voucher_ledger import VoucherLedgerService
from drain.envs.provider_env import Settings
from drain.infrastructure.provider.provider_client import ProviderClient


@pytest.fixture
def pricing_service() -> PricingService:
    # "flat": 100 prompt + 50 completion tokens cost exactly 10,000
    return PricingService(
        initial_table=PricingTable(
            models={
                "flat": ModelPricing(input_per_k=50_000, output_per_k=100_000),
                "tiny": ModelPricing(input_per_k=1, output_per_k=2),
            },
            source="story",
        )
    )


@pytest.fixture
def provider_app(
    ledger_service: VoucherLedgerService,
    pricing_service: PricingService,
    orchestrator: InferenceOrchestrator,
) -> FastAPI:
    app = FastAPI()
    app.include_router(completions.router, prefix="/v1")
    app.include_router(pricing.router, prefix="/v1")
    app.include_router(admin.router, prefix="/v1")

    settings = Settings.model_construct(admin_api_key=None)
    app.dependency_overrides[get_provider_settings] = lambda: settings
    app.dependency_overrides[get_voucher_ledger_service] = lambda: ledger_service
    app.dependency_overrides[get_pricing_service] = lambda: pricing_service
    app.dependency_overrides[get_inference_orchestrator] = lambda: orchestrator
    return app


@pytest.fixture
async def provider_http(provider_app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Raw HTTP access to the provider (admin routes)."""
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=provider_app), base_url="http://provider"
    ) as client:
        yield client


@pytest.fixture
async def provider_api(provider_app: FastAPI) -> AsyncGenerator[ProviderClient, None]:
    client = ProviderClient(
        "http://provider", transport=httpx.ASGITransport(app=provider_app)
    )
    yield client
    await client.aclose()


@pytest.fixture
def paid_chat(
    channel_client: ConsumerChannelClient, provider_api: ProviderClient
) -> PaidChatClient:
    return PaidChatClient(channel_client, provider_api)
