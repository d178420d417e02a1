"""Per-channel asyncio locks.

All mutation of one channel's ledger (provider) or signing counters
(consumer) happens while holding that channel's lock. Different channels
never contend.
"""

from __future__ import annotations

import asyncio
from typing import Dict


class ChannelLocks:
    """Lazily created ``asyncio.Lock`` per channel id."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}

    def for_channel(self, channel_id: str) -> asyncio.Lock:
        key = channel_id.lower()
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def discard(self, channel_id: str) -> None:
        """Forget an idle lock (after a channel is purged or closed)."""
        key = channel_id.lower()
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)
