"""Story: two in-flight requests on one channel never regress its nonce."""

from __future__ import annotations

import asyncio

import pytest

from drain.application.consumer.use_cases.channel_client import ConsumerChannelClient
from drain.domain.errors import PaymentRejected
from drain.infrastructure.provider.provider_client import ProviderClient

BODY = {"model": "flat", "messages": [{"role": "user", "content": "Hi"}]}
FLAT_COST = 10_000


@pytest.mark.asyncio
async def test_nonces_five_and_six_in_flight_together(
    open_channel,
    channel_client: ConsumerChannelClient,
    provider_api: ProviderClient,
    ledger_repository,
) -> None:
    """
    Story: nonces 1-4 are paid one by one, then 5 and 6 race.

    Whatever the interleaving, nonce 6 ends up recorded, and nonce 5 is
    either recorded before it or rejected.
    """
    channel_id = await open_channel(deposit=1_000_000)
    for _ in range(4):
        voucher = await channel_client.sign_voucher(channel_id, FLAT_COST)
        await provider_api.chat_completion(voucher, BODY)

    fifth = await channel_client.sign_voucher(channel_id, FLAT_COST)
    sixth = await channel_client.sign_voucher(channel_id, FLAT_COST)
    assert (fifth.nonce, sixth.nonce) == (5, 6)

    results = await asyncio.gather(
        provider_api.chat_completion(fifth, BODY),
        provider_api.chat_completion(sixth, BODY),
        return_exceptions=True,
    )

    assert not isinstance(results[1], Exception)
    if isinstance(results[0], Exception):
        assert isinstance(results[0], PaymentRejected)

    state = await ledger_repository.get_channel_state(channel_id)
    assert state.last_nonce == 6
    assert state.last_voucher.amount == 60_000

    vouchers = await ledger_repository.get_vouchers(channel_id)
    nonces = [v.nonce for v in vouchers]
    amounts = [v.amount for v in vouchers]
    assert nonces == sorted(nonces)
    assert nonces[-1] == 6
    assert amounts == sorted(amounts)
    assert state.total_charged == FLAT_COST * len(vouchers)


@pytest.mark.asyncio
async def test_many_channels_in_parallel(
    open_channel,
    channel_client: ConsumerChannelClient,
    provider_api: ProviderClient,
    ledger_repository,
) -> None:
    """Different channels do not contend; every request is billed."""
    channel_ids = [await open_channel() for _ in range(5)]
    vouchers = [
        await channel_client.sign_voucher(channel_id, FLAT_COST)
        for channel_id in channel_ids
    ]

    responses = await asyncio.gather(
        *(provider_api.chat_completion(v, BODY) for v in vouchers)
    )

    assert all(r.receipt.total == FLAT_COST for r in responses)
    assert sorted(await ledger_repository.list_channel_ids()) == sorted(channel_ids)
