"""Consumer channel client: opens channels and signs cumulative vouchers."""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, List, Optional, Union

from ....crypto.voucher_codec import VoucherDomain, parse_address, sign_voucher
from ....domain.entities import Channel, Voucher
from ....domain.errors import (
    ChannelNotExpired,
    DepositExceeded,
    InsufficientAllowance,
    NoPresignedVoucher,
    UnknownChannel,
)
from ....domain.shared import ChannelOracleProtocol
from ....domain.units import parse_duration
from ...shared.channel_locks import ChannelLocks
from ..dtos import (
    CloseChannelResult,
    LocalChannelState,
    OpenChannelResult,
    SpendingSummary,
)

logger = logging.getLogger(__name__)


class ConsumerChannelClient:
    """Owns the consumer's per-channel nonce and spend counters.

    Signing for one channel is serialized by a per-channel lock so two
    concurrent calls never allocate the same nonce. Counters live in this
    process only; a second process signing on the same channel must
    coordinate with this one externally.
    """

    def __init__(
        self,
        channel_oracle: ChannelOracleProtocol,
        private_key: str,
        *,
        locks: Optional[ChannelLocks] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.channel_oracle = channel_oracle
        self._private_key = private_key
        self.locks = locks or ChannelLocks()
        self._clock = clock
        self._channels: Dict[str, LocalChannelState] = {}

    @property
    def address(self) -> str:
        return self.channel_oracle.address

    @property
    def domain(self) -> VoucherDomain:
        return VoucherDomain(
            chain_id=self.channel_oracle.chain_id,
            verifying_contract=self.channel_oracle.contract_address,
        )

    def _require(self, channel_id: str) -> LocalChannelState:
        state = self._channels.get(channel_id.lower())
        if state is None:
            raise UnknownChannel(f"No local state for channel {channel_id}")
        return state

    # Token balance and allowance

    async def get_token_balance(self) -> int:
        return await self.channel_oracle.get_token_balance(self.address)

    async def get_allowance(self) -> int:
        return await self.channel_oracle.get_allowance(self.address)

    async def approve(self, amount: int) -> str:
        if amount < 0:
            raise ValueError("Approval amount must be non-negative")
        tx_hash = await self.channel_oracle.approve(amount)
        logger.info("Approved %d for channel contract: %s", amount, tx_hash)
        return tx_hash

    async def ensure_allowance(self, amount: int) -> Optional[str]:
        """Approve ``amount`` only when the current allowance is short."""
        if await self.get_allowance() >= amount:
            return None
        return await self.approve(amount)

    # Channel lifecycle

    async def open_channel(
        self,
        provider: str,
        deposit_amount: int,
        duration: Union[int, str],
        *,
        auto_approve: bool = False,
    ) -> OpenChannelResult:
        """Open a channel and start tracking it with counters at (0, 0).

        Raises:
            InsufficientAllowance: If the allowance is below the deposit and
                ``auto_approve`` is off.
            OnChainFailure: If the open transaction reverts or is not confirmed.
        """
        provider = parse_address(provider, "provider")
        if deposit_amount <= 0:
            raise ValueError("Deposit must be positive")
        duration_seconds = parse_duration(duration)

        allowance = await self.get_allowance()
        if allowance < deposit_amount:
            if not auto_approve:
                raise InsufficientAllowance(allowance, deposit_amount)
            await self.approve(deposit_amount)

        channel_id, tx_hash = await self.channel_oracle.open_channel(
            provider, deposit_amount, duration_seconds
        )
        channel = await self.channel_oracle.get_channel(channel_id)
        self._channels[channel_id.lower()] = LocalChannelState(channel=channel)
        logger.info("Opened channel %s with deposit %d: %s", channel_id, deposit_amount, tx_hash)
        return OpenChannelResult(channel_id=channel_id.lower(), tx_hash=tx_hash, channel=channel)

    async def track_channel(
        self, channel_id: str, *, last_nonce: int = 0, cumulative_spend: int = 0
    ) -> LocalChannelState:
        """Resume signing on a channel opened earlier (e.g. by another session)."""
        channel = await self.channel_oracle.get_channel(channel_id)
        if not channel.exists:
            raise UnknownChannel(f"Channel {channel_id} not found or closed")
        if channel.consumer.lower() != self.address.lower():
            raise UnknownChannel(f"Channel {channel_id} belongs to another consumer")
        state = LocalChannelState(
            channel=channel,
            last_nonce=last_nonce,
            cumulative_spend=cumulative_spend,
            issued_nonce=last_nonce,
        )
        self._channels[channel_id.lower()] = state
        return state

    async def refresh_channel(self, channel_id: str) -> Channel:
        """Re-read the channel from the oracle and update the cached deposit."""
        self.channel_oracle.invalidate(channel_id)
        channel = await self.channel_oracle.get_channel(channel_id)
        state = self._channels.get(channel_id.lower())
        if state is not None:
            state.channel = channel
        return channel

    async def close_channel(self, channel_id: str) -> CloseChannelResult:
        """Reclaim ``deposit - claimed`` once the channel has expired.

        Raises:
            ChannelNotExpired: Before expiry; no transaction is submitted.
        """
        channel = await self.refresh_channel(channel_id)
        if not channel.exists:
            raise UnknownChannel(f"Channel {channel_id} not found or already closed")
        now = int(self._clock())
        if not channel.is_expired(now):
            raise ChannelNotExpired(
                channel.id, channel.expiry, channel.seconds_until_expiry(now)
            )

        refund = channel.deposit - channel.claimed
        tx_hash = await self.channel_oracle.close(channel_id)
        self._channels.pop(channel_id.lower(), None)
        self.locks.discard(channel_id)
        logger.info("Closed channel %s, refund %d: %s", channel_id, refund, tx_hash)
        return CloseChannelResult(channel_id=channel.id, tx_hash=tx_hash, refund=refund)

    # Signing

    def _sign_next(self, state: LocalChannelState, new_total: int) -> Voucher:
        channel = state.channel
        if new_total > channel.deposit:
            raise DepositExceeded(new_total, channel.deposit, channel.claimed)
        nonce = state.last_nonce + 1
        voucher = sign_voucher(channel.id, new_total, nonce, self.domain, self._private_key)
        state.last_nonce = nonce
        return voucher

    async def sign_voucher(
        self, channel_id: str, amount: int, *, target: bool = False
    ) -> Voucher:
        """Sign a voucher for the new cumulative total.

        ``amount`` is an increment over the current spend, or with
        ``target=True`` the cumulative total itself. Any remaining pre-signed
        vouchers are dropped since this one supersedes them.

        Raises:
            DepositExceeded: If the new total is above the cached deposit.
        """
        if amount < 0:
            raise ValueError("Amount must be non-negative")
        async with self.locks.for_channel(channel_id):
            state = self._require(channel_id)
            new_total = amount if target else state.cumulative_spend + amount
            if new_total < state.cumulative_spend:
                raise ValueError(
                    f"Cumulative total cannot decrease below {state.cumulative_spend}"
                )
            voucher = self._sign_next(state, new_total)
            state.presigned.clear()
            state.cumulative_spend = new_total
            state.issued_nonce = voucher.nonce
            return voucher

    async def presign_batch(
        self, channel_id: str, count: int, unit_cost: int
    ) -> List[Voucher]:
        """Sign up to ``count`` vouchers of ``spend + i * unit_cost``.

        Stops early at the first total above the deposit. The vouchers are
        queued and handed out in order by ``next_presigned``.
        """
        if count <= 0 or unit_cost <= 0:
            raise ValueError("count and unit_cost must be positive")
        async with self.locks.for_channel(channel_id):
            state = self._require(channel_id)
            base = state.presigned[-1].amount if state.presigned else state.cumulative_spend
            batch: List[Voucher] = []
            for i in range(1, count + 1):
                new_total = base + i * unit_cost
                if new_total > state.channel.deposit:
                    break
                batch.append(self._sign_next(state, new_total))
            state.presigned.extend(batch)
            return batch

    async def next_presigned(self, channel_id: str) -> Voucher:
        async with self.locks.for_channel(channel_id):
            state = self._require(channel_id)
            while state.presigned:
                voucher = state.presigned.pop(0)
                if voucher.nonce <= state.issued_nonce:
                    continue
                state.issued_nonce = voucher.nonce
                state.cumulative_spend = voucher.amount
                return voucher
            raise NoPresignedVoucher(f"No pre-signed vouchers left for {channel_id}")

    async def reconcile(self, channel_id: str, provider_total: int) -> None:
        """Record the provider's reported running total for the channel."""
        async with self.locks.for_channel(channel_id):
            state = self._require(channel_id)
            state.provider_charged = max(state.provider_charged, provider_total)

    def get_spending(self, channel_id: str) -> SpendingSummary:
        state = self._require(channel_id)
        channel = state.channel
        return SpendingSummary(
            channel_id=channel.id,
            deposit=channel.deposit,
            claimed=channel.claimed,
            cumulative_spend=state.cumulative_spend,
            provider_charged=state.provider_charged,
            remaining=channel.deposit - state.cumulative_spend,
            last_nonce=state.last_nonce,
            presigned_count=len(state.presigned),
        )

    def tracked_channels(self) -> List[str]:
        return sorted(self._channels)
