"""Shared pytest fixtures: a fake chain with one consumer and one provider."""

from __future__ import annotations

from typing import AsyncGenerator, Callable

import pytest

from drain.application.consumer.use_cases.channel_client import ConsumerChannelClient
from drain.application.provider.use_cases.inference import InferenceOrchestrator
from drain.application.provider.use_cases.pricing import PricingService
from drain.application.provider.use_cases.voucher_ledger import VoucherLedgerService
from drain.crypto.voucher_codec import sign_voucher
from drain.domain.entities import Voucher
from drain.infrastructure.ledger.ledger_repository_impl import (
    ChannelLedgerRepositoryImpl,
)
from tests.fixtures import (
    FakeChain,
    FakeChannelOracle,
    FakeClock,
    FakeCompletionBackend,
    InMemoryKeyValueStore,
    new_private_key,
)

CLAIM_THRESHOLD = 1_000_000


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def chain(clock: FakeClock) -> FakeChain:
    return FakeChain(clock=clock)


@pytest.fixture
def consumer_key() -> str:
    return new_private_key()


@pytest.fixture
def provider_key() -> str:
    return new_private_key()


@pytest.fixture
def consumer_oracle(chain: FakeChain, consumer_key: str) -> FakeChannelOracle:
    return FakeChannelOracle(chain, consumer_key)


@pytest.fixture
def provider_oracle(chain: FakeChain, provider_key: str) -> FakeChannelOracle:
    return FakeChannelOracle(chain, provider_key)


@pytest.fixture
async def store() -> AsyncGenerator[InMemoryKeyValueStore, None]:
    """Create an in-memory key-value store."""
    kv = InMemoryKeyValueStore()
    yield kv
    kv.clear()


@pytest.fixture
def ledger_repository(store: InMemoryKeyValueStore) -> ChannelLedgerRepositoryImpl:
    return ChannelLedgerRepositoryImpl(store)


@pytest.fixture
def ledger_service(
    ledger_repository: ChannelLedgerRepositoryImpl,
    provider_oracle: FakeChannelOracle,
    clock: FakeClock,
) -> VoucherLedgerService:
    return VoucherLedgerService(
        ledger_repository, provider_oracle, CLAIM_THRESHOLD, clock=clock
    )


@pytest.fixture
def channel_client(
    consumer_oracle: FakeChannelOracle, consumer_key: str, clock: FakeClock
) -> ConsumerChannelClient:
    return ConsumerChannelClient(consumer_oracle, consumer_key, clock=clock)


@pytest.fixture
async def open_channel(
    chain: FakeChain,
    channel_client: ConsumerChannelClient,
    provider_oracle: FakeChannelOracle,
):
    """Factory: open a channel to the provider and track it on the consumer."""

    async def _open(deposit: int = 1_000_000, duration: int = 86_400) -> str:
        channel_id = chain.add_channel(
            channel_client.address, provider_oracle.address, deposit, duration
        )
        await channel_client.track_channel(channel_id)
        return channel_id

    return _open


@pytest.fixture
def pricing_service() -> PricingService:
    return PricingService()


@pytest.fixture
def backend() -> FakeCompletionBackend:
    return FakeCompletionBackend()


@pytest.fixture
def orchestrator(
    ledger_service: VoucherLedgerService,
    pricing_service: PricingService,
    backend: FakeCompletionBackend,
) -> InferenceOrchestrator:
    return InferenceOrchestrator(ledger_service, pricing_service, backend)


@pytest.fixture
def sign(chain: FakeChain, consumer_key: str) -> Callable[[str, int, int], Voucher]:
    """Sign a voucher as the consumer, bypassing the client's counters."""

    def _sign(channel_id: str, amount: int, nonce: int) -> Voucher:
        return sign_voucher(channel_id, amount, nonce, chain.domain, consumer_key)

    return _sign
