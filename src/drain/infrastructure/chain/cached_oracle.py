"""Short-lived read cache in front of a channel oracle."""

from __future__ import annotations

import time
from typing import Callable, Dict, Optional, Tuple, Type
from types import TracebackType

from ...domain.entities import Channel
from ...domain.shared import ChannelOracleProtocol


class CachedChannelOracle:
    """Caches ``get_channel`` per channel for ``ttl_seconds``.

    Deposit and expiry never change while a channel is open and ``claimed``
    only changes through writes that go through this wrapper, so a few seconds
    of staleness is harmless. Writes drop the affected entry.
    """

    def __init__(
        self,
        inner: ChannelOracleProtocol,
        ttl_seconds: float = 5.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.inner = inner
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._channels: Dict[str, Tuple[float, Channel]] = {}

    @property
    def address(self) -> str:
        return self.inner.address

    @property
    def chain_id(self) -> int:
        return self.inner.chain_id

    @property
    def contract_address(self) -> str:
        return self.inner.contract_address

    async def get_channel(self, channel_id: str) -> Channel:
        key = channel_id.lower()
        cached = self._channels.get(key)
        now = self._clock()
        if cached is not None and now - cached[0] < self.ttl_seconds:
            return cached[1]
        channel = await self.inner.get_channel(channel_id)
        self._channels[key] = (now, channel)
        return channel

    async def get_balance(self, channel_id: str) -> int:
        return (await self.get_channel(channel_id)).balance

    async def get_allowance(self, owner: str) -> int:
        return await self.inner.get_allowance(owner)

    async def get_token_balance(self, owner: str) -> int:
        return await self.inner.get_token_balance(owner)

    async def approve(self, amount: int) -> str:
        return await self.inner.approve(amount)

    async def open_channel(
        self, provider: str, amount: int, duration: int
    ) -> tuple[str, str]:
        return await self.inner.open_channel(provider, amount, duration)

    async def claim(
        self, channel_id: str, amount: int, nonce: int, signature: str
    ) -> str:
        try:
            return await self.inner.claim(channel_id, amount, nonce, signature)
        finally:
            self.invalidate(channel_id)

    async def close(self, channel_id: str) -> str:
        try:
            return await self.inner.close(channel_id)
        finally:
            self.invalidate(channel_id)

    def invalidate(self, channel_id: Optional[str] = None) -> None:
        if channel_id is None:
            self._channels.clear()
        else:
            self._channels.pop(channel_id.lower(), None)
        self.inner.invalidate(channel_id)

    async def aclose(self) -> None:
        await self.inner.aclose()

    async def __aenter__(self) -> "CachedChannelOracle":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        await self.aclose()
