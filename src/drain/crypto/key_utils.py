from __future__ import annotations

import re

from eth_account import Account

_PRIVATE_KEY_RE = re.compile(r"^(0x)?[0-9a-fA-F]{64}$")


def validate_private_key_hex(private_key: str) -> str:
    """Return the 0x-prefixed key after checking it loads as a secp256k1 key."""
    if not private_key or not _PRIVATE_KEY_RE.match(private_key):
        raise ValueError("Private key must be 32 bytes of hex")
    if not private_key.startswith("0x"):
        private_key = "0x" + private_key
    Account.from_key(private_key)
    return private_key
