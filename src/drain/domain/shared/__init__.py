"""Shared domain utilities.

This package is domain-accessible and should not depend on application code.
"""

from .channel_oracle_protocol import ChannelOracleProtocol

__all__ = ["ChannelOracleProtocol"]
