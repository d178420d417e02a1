"""Protocol interface for channel oracle implementations.

The channel oracle is the read/write interface to the external ledger that
custodies deposits. It is the authority for channel existence, deposit,
claimed amount and expiry, and the only component that submits transactions.
Services accept any implementation satisfying this protocol, which keeps them
testable with in-memory fakes.
"""

from __future__ import annotations

from typing import Optional, Protocol, Type
from types import TracebackType

from ..entities import Channel


class ChannelOracleProtocol(Protocol):
    """Protocol defining the interface for channel oracle implementations.

    Reads may be cached and retried by implementations. Writes are submitted
    once and wait for confirmation; implementations raise ``OnChainFailure``
    with ``reason="reverted"`` when the transaction is mined with a failure
    status and ``reason="timeout"`` when it is never confirmed.
    """

    @property
    def address(self) -> str:
        """Address of the account this oracle signs transactions with."""
        ...

    @property
    def chain_id(self) -> int:
        ...

    @property
    def contract_address(self) -> str:
        ...

    # Reads

    async def get_channel(self, channel_id: str) -> Channel:
        """Return the on-chain view of a channel.

        A channel that never existed, or has been closed, is returned with the
        zero address as consumer.
        """
        ...

    async def get_balance(self, channel_id: str) -> int:
        """Return ``deposit - claimed`` for the channel."""
        ...

    async def get_allowance(self, owner: str) -> int:
        """Token allowance granted by ``owner`` to the channel contract."""
        ...

    async def get_token_balance(self, owner: str) -> int:
        ...

    # Writes

    async def approve(self, amount: int) -> str:
        """Approve the channel contract to pull ``amount``; returns the tx hash."""
        ...

    async def open_channel(
        self, provider: str, amount: int, duration: int
    ) -> tuple[str, str]:
        """Open a channel and wait for confirmation.

        Returns:
            ``(channel_id, tx_hash)`` with the id taken from the open event.
        """
        ...

    async def claim(
        self, channel_id: str, amount: int, nonce: int, signature: str
    ) -> str:
        """Redeem a voucher on-chain; returns the tx hash once confirmed."""
        ...

    async def close(self, channel_id: str) -> str:
        """Close an expired channel, refunding the consumer; returns the tx hash."""
        ...

    def invalidate(self, channel_id: Optional[str] = None) -> None:
        """Drop cached reads for one channel (or all channels)."""
        ...

    # Context Manager Support

    async def aclose(self) -> None:
        ...

    async def __aenter__(self) -> "ChannelOracleProtocol":
        ...

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        ...
