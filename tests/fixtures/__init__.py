"""Test fixtures for in-memory implementations."""

from .fake_backend import FakeCompletionBackend
from .fake_channel_oracle import (
    FakeChain,
    FakeChannelOracle,
    FakeClock,
    new_private_key,
)
from .in_memory_storage import InMemoryKeyValueStore

__all__ = [
    "FakeChain",
    "FakeChannelOracle",
    "FakeClock",
    "FakeCompletionBackend",
    "InMemoryKeyValueStore",
    "new_private_key",
]
