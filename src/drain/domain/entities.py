"""Domain entities: on-chain Channel view, Voucher, and the provider ledger records."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class AmountSerializersMixin:
    """Serialize token amounts and nonces as decimal strings in JSON.

    uint256 values do not fit in a JavaScript number, and other readers of the
    ledger store may not be Python.
    """

    @field_serializer(
        "amount", "nonce", "deposit", "claimed", "total_charged",
        check_fields=False,
        when_used="json",
    )
    def serialize_uint(self, value):
        # StoredVoucher.claimed is a flag, Channel.claimed is an amount
        if isinstance(value, bool):
            return value
        return str(value)


class ChannelStatus(str, Enum):
    UNKNOWN = "unknown"
    ACTIVE = "active"
    EXPIRED = "expired"
    CLOSED = "closed"


class Channel(AmountSerializersMixin, BaseModel):
    """Read-only view of a channel as reported by the channel oracle."""

    model_config = ConfigDict(frozen=True)

    id: str
    consumer: str
    provider: str
    deposit: int = Field(..., ge=0)
    claimed: int = Field(..., ge=0)
    expiry: int = Field(..., ge=0, description="Unix timestamp (seconds)")

    @property
    def exists(self) -> bool:
        return bool(self.consumer) and self.consumer.lower() != ZERO_ADDRESS

    @property
    def balance(self) -> int:
        """Value still locked in the channel (deposit - claimed)."""
        return self.deposit - self.claimed

    def is_expired(self, now: Optional[int] = None) -> bool:
        now = int(time.time()) if now is None else now
        return now >= self.expiry

    def seconds_until_expiry(self, now: Optional[int] = None) -> int:
        now = int(time.time()) if now is None else now
        return max(0, self.expiry - now)

    def status(self, now: Optional[int] = None) -> ChannelStatus:
        """Lifecycle state derived lazily from the oracle view.

        A cleared consumer slot on a channel we have seen before means CLOSED;
        callers that never saw the channel treat it as UNKNOWN.
        """
        if not self.exists:
            return ChannelStatus.CLOSED
        if self.is_expired(now):
            return ChannelStatus.EXPIRED
        return ChannelStatus.ACTIVE


class Voucher(AmountSerializersMixin, BaseModel):
    """Consumer-signed authorization of a cumulative amount on a channel."""

    model_config = ConfigDict(frozen=True)

    channel_id: str
    amount: int = Field(..., ge=0, description="Cumulative total, not an increment")
    nonce: int = Field(..., ge=1)
    signature: str


class StoredVoucher(Voucher):
    """Voucher as persisted by the provider, with claim bookkeeping."""

    model_config = ConfigDict(frozen=False)

    consumer: str
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    claimed: bool = False
    claimed_at: Optional[datetime] = None
    claim_tx_hash: Optional[str] = None

    @classmethod
    def from_voucher(cls, voucher: Voucher, consumer: str) -> "StoredVoucher":
        return cls(
            channel_id=voucher.channel_id,
            amount=voucher.amount,
            nonce=voucher.nonce,
            signature=voucher.signature,
            consumer=consumer,
        )

    def to_voucher(self) -> Voucher:
        return Voucher(
            channel_id=self.channel_id,
            amount=self.amount,
            nonce=self.nonce,
            signature=self.signature,
        )

    def mark_claimed(self, tx_hash: Optional[str]) -> None:
        self.claimed = True
        self.claimed_at = datetime.now(timezone.utc)
        self.claim_tx_hash = tx_hash


class ChannelState(AmountSerializersMixin, BaseModel):
    """Provider-local ledger entry for one channel."""

    channel_id: str
    consumer: str
    deposit: int = Field(..., ge=0)
    total_charged: int = Field(0, ge=0)
    last_voucher: Optional[StoredVoucher] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def remaining(self) -> int:
        return self.deposit - self.total_charged

    @property
    def last_nonce(self) -> int:
        return self.last_voucher.nonce if self.last_voucher else 0

    def apply_charge(self, voucher: StoredVoucher, cost: int) -> None:
        """Record a rendered charge against this channel."""
        self.total_charged += cost
        self.last_voucher = voucher
        self.last_activity_at = datetime.now(timezone.utc)
