"""Story: closing a channel early fails fast without a transaction."""

from __future__ import annotations

import pytest

from drain.application.consumer.use_cases.channel_client import ConsumerChannelClient
from drain.domain.errors import ChannelNotExpired
from tests.fixtures import FakeChain, FakeClock


@pytest.mark.asyncio
async def test_close_before_expiry_then_after(
    chain: FakeChain,
    clock: FakeClock,
    channel_client: ConsumerChannelClient,
    provider_oracle,
) -> None:
    """
    Story: consumer tries to close an unexpired channel, waits, closes.

    Phase1: Consumer opens a 1 hour channel
    Phase2: Close is refused locally; the chain sees no transaction
    Phase3: After expiry the close refunds the whole deposit
    """
    chain.mint(channel_client.address, 1_000_000)
    opened = await channel_client.open_channel(
        provider_oracle.address, 1_000_000, "1h", auto_approve=True
    )
    channels_before = dict(chain.channels)
    balance_before = await channel_client.get_token_balance()

    clock.advance(1_800)
    with pytest.raises(ChannelNotExpired) as exc_info:
        await channel_client.close_channel(opened.channel_id)

    assert exc_info.value.seconds_remaining == 1_800
    assert chain.channels == channels_before
    assert await channel_client.get_token_balance() == balance_before

    clock.advance(1_800)
    result = await channel_client.close_channel(opened.channel_id)

    assert result.refund == 1_000_000
    assert opened.channel_id not in chain.channels
    assert await channel_client.get_token_balance() == 1_000_000
