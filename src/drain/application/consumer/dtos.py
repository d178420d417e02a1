"""Data Transfer Objects for the consumer application layer."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from ...domain.entities import Channel, Voucher


class LocalChannelState(BaseModel):
    """Consumer-private signing counters for one channel.

    ``last_nonce`` is the highest nonce allocated, including pre-signed
    vouchers not yet handed out. ``cumulative_spend`` is the amount of the
    highest voucher handed out. ``provider_charged`` is the provider's last
    reported running total.
    """

    channel: Channel
    last_nonce: int = 0
    cumulative_spend: int = 0
    issued_nonce: int = 0
    provider_charged: int = 0
    presigned: List[Voucher] = Field(default_factory=list)


class OpenChannelResult(BaseModel):
    channel_id: str
    tx_hash: str
    channel: Channel


class CloseChannelResult(BaseModel):
    channel_id: str
    tx_hash: str
    refund: int


class SpendingSummary(BaseModel):
    channel_id: str
    deposit: int
    claimed: int
    cumulative_spend: int
    provider_charged: int
    remaining: int
    last_nonce: int
    presigned_count: int
