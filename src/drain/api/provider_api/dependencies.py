"""FastAPI dependencies for the provider API."""

from __future__ import annotations

import hmac
import logging
from typing import Optional, Union

from fastapi import Depends, Header, HTTPException, status

from ...application.provider.use_cases.inference import InferenceOrchestrator
from ...application.provider.use_cases.pricing import PricingService
from ...application.provider.use_cases.voucher_ledger import VoucherLedgerService
from ...envs.provider_env import Settings, get_settings
from ...infrastructure.chain.cached_oracle import CachedChannelOracle
from ...infrastructure.chain.web3_oracle import Web3ChannelOracle
from ...infrastructure.database import DatabaseClient, get_database_client
from ...infrastructure.ledger.ledger_repository_impl import ChannelLedgerRepositoryImpl
from ...infrastructure.pricing.upstream_pricing import UpstreamPriceList
from ...infrastructure.storage import (
    JsonFileKeyValueStore,
    KeyValueStore,
    RedisKeyValueStore,
)
from ...infrastructure.upstream.openai_backend import OpenAICompatibleBackend

logger = logging.getLogger(__name__)


class ProviderServices:
    """Process-wide service graph.

    Locks, the oracle cache and the pricing table must be shared by every
    request, so these are built once per process rather than per request.
    """

    def __init__(self, settings: Settings):
        self.settings = settings

        self.db_client: Optional[DatabaseClient] = None
        self.store: KeyValueStore
        if settings.uses_redis:
            self.db_client = get_database_client(settings)
            self.store = RedisKeyValueStore(self.db_client)
        else:
            self.store = JsonFileKeyValueStore(settings.storage_path)

        self.channel_oracle = CachedChannelOracle(
            Web3ChannelOracle(
                settings.rpc_url,
                settings.contract_address,
                settings.chain_id,
                settings.provider_private_key,
                read_retries=settings.oracle_read_retries,
                read_timeout=settings.oracle_read_timeout_seconds,
                tx_timeout=settings.tx_timeout_seconds,
            ),
            ttl_seconds=settings.oracle_cache_ttl_seconds,
        )
        self.ledger = VoucherLedgerService(
            ChannelLedgerRepositoryImpl(self.store),
            self.channel_oracle,
            settings.claim_threshold,
        )

        self.price_list: Optional[UpstreamPriceList] = (
            UpstreamPriceList(settings.pricing_url, settings.upstream_api_key)
            if settings.pricing_url
            else None
        )
        self.pricing = PricingService(
            self.price_list, markup_percent=settings.pricing_markup_percent
        )
        self.backend = OpenAICompatibleBackend(
            settings.upstream_base_url, settings.upstream_api_key
        )
        self.orchestrator = InferenceOrchestrator(self.ledger, self.pricing, self.backend)

    async def startup(self) -> None:
        await self.pricing.refresh()
        self.pricing.start_periodic_refresh(self.settings.pricing_refresh_seconds)

    async def aclose(self) -> None:
        await self.pricing.stop()
        await self.backend.aclose()
        if self.price_list is not None:
            await self.price_list.aclose()
        await self.channel_oracle.aclose()
        if self.db_client is not None:
            await self.db_client.aclose()


_settings: Union[Settings, None] = None
_services: Union[ProviderServices, None] = None


def get_provider_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = get_settings()
    return _settings


def get_provider_services(
    settings: Settings = Depends(get_provider_settings),
) -> ProviderServices:
    """Get or create the provider service graph singleton."""
    global _services
    if _services is None:
        _services = ProviderServices(settings)
    return _services


def get_voucher_ledger_service(
    services: ProviderServices = Depends(get_provider_services),
) -> VoucherLedgerService:
    return services.ledger


def get_pricing_service(
    services: ProviderServices = Depends(get_provider_services),
) -> PricingService:
    return services.pricing


def get_inference_orchestrator(
    services: ProviderServices = Depends(get_provider_services),
) -> InferenceOrchestrator:
    return services.orchestrator


def require_admin(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_provider_settings),
) -> None:
    """Bearer-token guard for admin routes; open when no admin key is configured."""
    admin_key = settings.admin_api_key
    if not admin_key:
        return
    scheme, _, token = (authorization or "").partition(" ")
    if scheme != "Bearer" or not token:
        logger.warning("Admin access attempt without a bearer token")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    if not hmac.compare_digest(token.encode(), admin_key.encode()):
        logger.warning("Admin access attempt with an invalid key")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
