from __future__ import annotations

import os

from pydantic import BaseModel, field_validator

from ..crypto.key_utils import validate_private_key_hex
from ..infrastructure.chain.abi import DEFAULT_RPC_URLS, DRAIN_ADDRESSES, USDC_ADDRESSES
from .provider_env import validate_chain_id, validate_http_url


class Settings(BaseModel):
    consumer_private_key: str
    provider_base_url: str
    chain_id: int
    rpc_url: str
    contract_address: str
    usdc_address: str
    tx_timeout_seconds: float

    @field_validator("consumer_private_key")
    @classmethod
    def validate_consumer_private_key(cls, v: str) -> str:
        if not v:
            raise ValueError("DRAIN_CONSUMER_PRIVATE_KEY is required")
        try:
            return validate_private_key_hex(v)
        except Exception as e:
            raise ValueError(f"Invalid consumer private key: {e}") from e

    @field_validator("provider_base_url")
    @classmethod
    def validate_provider_base_url(cls, v: str) -> str:
        if not v:
            raise ValueError("DRAIN_PROVIDER_BASE_URL is required")
        return validate_http_url(v, "DRAIN_PROVIDER_BASE_URL")

    @field_validator("rpc_url")
    @classmethod
    def validate_rpc_url(cls, v: str) -> str:
        return validate_http_url(v, "DRAIN_RPC_URL")

    @field_validator("chain_id")
    @classmethod
    def validate_chain(cls, v: int) -> int:
        return validate_chain_id(v)


def get_settings() -> Settings:
    chain_id_str = os.environ.get("DRAIN_CHAIN_ID")
    chain_id = int(chain_id_str) if chain_id_str else 137
    tx_timeout_str = os.environ.get("DRAIN_TX_TIMEOUT_SECONDS")

    return Settings(
        consumer_private_key=os.environ.get("DRAIN_CONSUMER_PRIVATE_KEY", ""),
        provider_base_url=os.environ.get("DRAIN_PROVIDER_BASE_URL", ""),
        chain_id=chain_id,
        rpc_url=os.environ.get("DRAIN_RPC_URL") or DEFAULT_RPC_URLS.get(chain_id, ""),
        contract_address=os.environ.get("DRAIN_CONTRACT_ADDRESS")
        or DRAIN_ADDRESSES.get(chain_id, ""),
        usdc_address=os.environ.get("DRAIN_USDC_ADDRESS")
        or USDC_ADDRESSES.get(chain_id, ""),
        tx_timeout_seconds=float(tx_timeout_str) if tx_timeout_str else 120.0,
    )
