"""Provider ledger domain repository interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List, Optional

from .entities import ChannelState, StoredVoucher


class ChannelLedgerRepository(ABC):
    """Abstract repository for ChannelState and StoredVoucher records.

    Callers are responsible for serializing writes per channel; the repository
    only guarantees that each individual write is durable.
    """

    @abstractmethod
    async def get_channel_state(self, channel_id: str) -> Optional[ChannelState]:
        """Get the ledger entry for a channel, if any."""
        pass

    @abstractmethod
    async def save_charge(
        self, channel_state: ChannelState, voucher: StoredVoucher
    ) -> ChannelState:
        """Persist the updated channel state together with the accepted voucher."""
        pass

    @abstractmethod
    async def get_vouchers(self, channel_id: str) -> List[StoredVoucher]:
        """All retained vouchers for a channel, ordered by nonce."""
        pass

    @abstractmethod
    async def get_highest_voucher(self, channel_id: str) -> Optional[StoredVoucher]:
        """The highest-amount voucher for a channel (ties broken by nonce)."""
        pass

    @abstractmethod
    async def list_channel_ids(self) -> List[str]:
        """Ids of every channel with a ledger entry."""
        pass

    @abstractmethod
    async def mark_claimed(
        self, channel_id: str, nonce: int, tx_hash: Optional[str]
    ) -> Optional[StoredVoucher]:
        """Mark a stored voucher as claimed on-chain."""
        pass

    @abstractmethod
    async def purge_channel(self, channel_id: str) -> bool:
        """Delete every record for a channel. Returns False if nothing existed."""
        pass
