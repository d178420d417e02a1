"""Deployed DrainChannel addresses and the minimal ABIs used to talk to them."""

from __future__ import annotations

from typing import Any, Dict, List

POLYGON_MAINNET = 137
POLYGON_AMOY = 80002

DRAIN_ADDRESSES: Dict[int, str] = {
    POLYGON_MAINNET: "0x1C1918C99b6DcE977392E4131C91654d8aB71e64",
    POLYGON_AMOY: "0x61f1C1E04d6Da1C92D0aF1a3d7Dc0fEFc8794d7C",
}

USDC_ADDRESSES: Dict[int, str] = {
    POLYGON_MAINNET: "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359",
    POLYGON_AMOY: "0x41E94Eb019C0762f9Bfcf9Fb1E58725BfB0e7582",
}

DEFAULT_RPC_URLS: Dict[int, str] = {
    POLYGON_MAINNET: "https://polygon-rpc.com",
    POLYGON_AMOY: "https://rpc-amoy.polygon.technology",
}

CHAIN_NAMES: Dict[int, str] = {
    POLYGON_MAINNET: "Polygon Mainnet",
    POLYGON_AMOY: "Polygon Amoy (Testnet)",
}

_CHANNEL_TUPLE = [
    {"name": "consumer", "type": "address"},
    {"name": "provider", "type": "address"},
    {"name": "deposit", "type": "uint256"},
    {"name": "claimed", "type": "uint256"},
    {"name": "expiry", "type": "uint256"},
]

DRAIN_CHANNEL_ABI: List[Dict[str, Any]] = [
    {
        "inputs": [{"name": "channelId", "type": "bytes32"}],
        "name": "getChannel",
        "outputs": [{"components": _CHANNEL_TUPLE, "name": "", "type": "tuple"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "channelId", "type": "bytes32"}],
        "name": "getBalance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "provider", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "duration", "type": "uint256"},
        ],
        "name": "open",
        "outputs": [{"name": "channelId", "type": "bytes32"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "channelId", "type": "bytes32"},
            {"name": "amount", "type": "uint256"},
            {"name": "nonce", "type": "uint256"},
            {"name": "signature", "type": "bytes"},
        ],
        "name": "claim",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [{"name": "channelId", "type": "bytes32"}],
        "name": "close",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "channelId", "type": "bytes32"},
            {"indexed": True, "name": "consumer", "type": "address"},
            {"indexed": True, "name": "provider", "type": "address"},
            {"indexed": False, "name": "deposit", "type": "uint256"},
            {"indexed": False, "name": "expiry", "type": "uint256"},
        ],
        "name": "ChannelOpened",
        "type": "event",
    },
]

ERC20_ABI: List[Dict[str, Any]] = [
    {
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "name": "approve",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "name": "allowance",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
]

CHANNEL_OPENED_SIGNATURE = "ChannelOpened(bytes32,address,address,uint256,uint256)"
