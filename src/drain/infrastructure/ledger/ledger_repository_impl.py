"""Channel ledger repository implementation over a storage abstraction."""

from __future__ import annotations

from typing import List, Optional

from ...domain.entities import ChannelState, StoredVoucher
from ...domain.ledger_repository import ChannelLedgerRepository
from ..storage import KeyValueStore

CHANNEL_STATE_PREFIX = "channel_state:"
VOUCHER_PREFIX = "voucher:"


def _state_key(channel_id: str) -> str:
    return f"{CHANNEL_STATE_PREFIX}{channel_id.lower()}"


def _voucher_prefix(channel_id: str) -> str:
    return f"{VOUCHER_PREFIX}{channel_id.lower()}:"


def _voucher_key(channel_id: str, nonce: int) -> str:
    return f"{_voucher_prefix(channel_id)}{nonce}"


class ChannelLedgerRepositoryImpl(ChannelLedgerRepository):
    """Channel ledger repository using a KeyValueStore."""

    def __init__(self, store: KeyValueStore):
        self.store = store

    async def get_channel_state(self, channel_id: str) -> Optional[ChannelState]:
        data = await self.store.get(_state_key(channel_id))
        if not data:
            return None
        return ChannelState.model_validate_json(data)

    async def save_charge(
        self, channel_state: ChannelState, voucher: StoredVoucher
    ) -> ChannelState:
        await self.store.set_many(
            {
                _voucher_key(voucher.channel_id, voucher.nonce): voucher.model_dump_json(),
                _state_key(channel_state.channel_id): channel_state.model_dump_json(),
            }
        )
        return channel_state

    async def get_vouchers(self, channel_id: str) -> List[StoredVoucher]:
        vouchers: List[StoredVoucher] = []
        for key in await self.store.keys(_voucher_prefix(channel_id)):
            data = await self.store.get(key)
            if data:
                vouchers.append(StoredVoucher.model_validate_json(data))
        vouchers.sort(key=lambda v: v.nonce)
        return vouchers

    async def get_highest_voucher(self, channel_id: str) -> Optional[StoredVoucher]:
        vouchers = await self.get_vouchers(channel_id)
        if not vouchers:
            return None
        return max(vouchers, key=lambda v: (v.amount, v.nonce))

    async def list_channel_ids(self) -> List[str]:
        keys = await self.store.keys(CHANNEL_STATE_PREFIX)
        return [key[len(CHANNEL_STATE_PREFIX):] for key in keys]

    async def mark_claimed(
        self, channel_id: str, nonce: int, tx_hash: Optional[str]
    ) -> Optional[StoredVoucher]:
        key = _voucher_key(channel_id, nonce)
        data = await self.store.get(key)
        if not data:
            return None
        voucher = StoredVoucher.model_validate_json(data)
        voucher.mark_claimed(tx_hash)

        updates = {key: voucher.model_dump_json()}
        state = await self.get_channel_state(channel_id)
        if state is not None and state.last_voucher and state.last_voucher.nonce == nonce:
            state.last_voucher = voucher
            updates[_state_key(channel_id)] = state.model_dump_json()
        await self.store.set_many(updates)
        return voucher

    async def purge_channel(self, channel_id: str) -> bool:
        deleted = 0
        for key in await self.store.keys(_voucher_prefix(channel_id)):
            deleted += await self.store.delete(key)
        deleted += await self.store.delete(_state_key(channel_id))
        return deleted > 0
