"""Story: open, pay for several requests, claim, close and purge."""

from __future__ import annotations

import httpx
import pytest

from drain.application.consumer.use_cases.channel_client import ConsumerChannelClient
from drain.application.consumer.use_cases.paid_chat import PaidChatClient
from tests.fixtures import FakeChain, FakeClock

BODY = {"model": "flat", "messages": [{"role": "user", "content": "Hi"}]}


@pytest.mark.asyncio
async def test_complete_channel_lifecycle_all_actors_succeed(
    chain: FakeChain,
    clock: FakeClock,
    channel_client: ConsumerChannelClient,
    paid_chat: PaidChatClient,
    provider_http: httpx.AsyncClient,
    provider_oracle,
) -> None:
    """
    Story: Complete DRAIN channel flow - all actors succeed.

    Phase1: Consumer opens a 1 USDC channel for one day
    Phase2: Consumer pays for three chat requests with growing vouchers
    Phase3: Provider claims the highest voucher
    Phase4: Consumer closes after expiry and gets the rest back
    Phase5: Provider purges the closed channel
    """
    chain.mint(channel_client.address, 1_000_000)
    opened = await channel_client.open_channel(
        provider_oracle.address, 1_000_000, "1d", auto_approve=True
    )
    channel_id = opened.channel_id

    # Pay for three requests
    last = None
    for i in range(1, 4):
        last = await paid_chat.chat(channel_id, BODY)
        assert last.voucher.nonce == i
        assert last.receipt.total == 10_000 * i
    spending = channel_client.get_spending(channel_id)
    assert spending.provider_charged == 30_000
    assert spending.cumulative_spend == last.voucher.amount
    assert last.voucher.amount > 30_000

    # Stats before the claim
    stats = (await provider_http.get("/v1/admin/stats")).json()
    assert stats["channelCount"] == 1
    assert stats["voucherCount"] == 3
    assert stats["totalEarned"] == "30000"
    assert stats["unclaimed"] == str(last.voucher.amount)

    # Below the threshold nothing is claimed unless forced
    claim = (await provider_http.post("/v1/admin/claim")).json()
    assert claim["claimed"] == 0
    assert claim["outcomes"][0]["reason"] == "below_threshold"

    claim = (await provider_http.post("/v1/admin/claim", json={"force": True})).json()
    assert claim["success"] is True
    assert claim["claimed"] == 1
    assert chain.claims == [(channel_id, last.voucher.amount, 3)]
    assert chain.channels[channel_id].claimed == last.voucher.amount
    assert await provider_oracle.get_token_balance(provider_oracle.address) == (
        last.voucher.amount
    )

    # Purging an open channel is refused
    response = await provider_http.delete(f"/v1/admin/channels/{channel_id}")
    assert response.status_code == 409

    # Consumer closes after expiry
    clock.advance(86_400)
    closed = await channel_client.close_channel(channel_id)
    assert closed.refund == 1_000_000 - last.voucher.amount
    assert await channel_client.get_token_balance() == closed.refund

    # Provider forgets the channel
    response = await provider_http.delete(f"/v1/admin/channels/{channel_id}")
    assert response.status_code == 200
    assert response.json()["purged"] is True
    stats = (await provider_http.get("/v1/admin/stats")).json()
    assert stats["channelCount"] == 0
