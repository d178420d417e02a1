from __future__ import annotations

import os
from typing import Optional
from urllib.parse import urlparse

from pydantic import BaseModel, field_validator

from ..crypto.key_utils import validate_private_key_hex
from ..infrastructure.chain.abi import DEFAULT_RPC_URLS, DRAIN_ADDRESSES

DEFAULT_STORAGE_URL = "./data/vouchers.json"
DEFAULT_CLAIM_THRESHOLD = 10_000_000


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    return value.lower() == "true" if value is not None else default


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    return int(value) if value not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    return float(value) if value not in (None, "") else default


def validate_chain_id(v: int) -> int:
    if v not in DRAIN_ADDRESSES:
        supported = ", ".join(str(c) for c in sorted(DRAIN_ADDRESSES))
        raise ValueError(f"Unsupported chain id {v}. Must be one of: {supported}")
    return v


def validate_http_url(v: str, name: str) -> str:
    parsed = urlparse(v)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError(f"{name} must be an http(s) URL with a host")
    return v.rstrip("/")


class Settings(BaseModel):
    chain_id: int
    rpc_url: str
    contract_address: str
    provider_private_key: str
    claim_threshold: int

    storage_url: str

    upstream_base_url: str
    upstream_api_key: Optional[str]
    pricing_url: Optional[str]
    pricing_markup_percent: int
    pricing_refresh_seconds: int

    admin_api_key: Optional[str]

    oracle_cache_ttl_seconds: float
    oracle_read_retries: int
    oracle_read_timeout_seconds: float
    tx_timeout_seconds: float

    api_host: str
    api_port: int
    api_debug: bool
    api_cors_origins: list[str]

    app_name: str
    app_version: str

    @field_validator("chain_id")
    @classmethod
    def validate_chain(cls, v: int) -> int:
        return validate_chain_id(v)

    @field_validator("provider_private_key")
    @classmethod
    def validate_provider_private_key(cls, v: str) -> str:
        if not v:
            raise ValueError("DRAIN_PROVIDER_PRIVATE_KEY is required")
        try:
            return validate_private_key_hex(v)
        except Exception as e:
            raise ValueError(f"Invalid provider private key: {e}") from e

    @field_validator("rpc_url", "upstream_base_url")
    @classmethod
    def validate_urls(cls, v: str) -> str:
        return validate_http_url(v, "URL")

    @field_validator("pricing_url")
    @classmethod
    def validate_pricing_url(cls, v: Optional[str]) -> Optional[str]:
        return validate_http_url(v, "DRAIN_PRICING_URL") if v else None

    @field_validator("claim_threshold", "pricing_markup_percent", "pricing_refresh_seconds")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @property
    def uses_redis(self) -> bool:
        return self.storage_url.startswith(("redis://", "rediss://", "unix://"))

    @property
    def storage_path(self) -> str:
        if self.storage_url.startswith("file://"):
            return self.storage_url[len("file://"):]
        return self.storage_url


def get_settings() -> Settings:
    chain_id = _env_int("DRAIN_CHAIN_ID", 137)
    cors = os.environ.get("DRAIN_API_CORS_ORIGINS")

    return Settings(
        chain_id=chain_id,
        rpc_url=os.environ.get("DRAIN_RPC_URL") or DEFAULT_RPC_URLS.get(chain_id, ""),
        contract_address=os.environ.get("DRAIN_CONTRACT_ADDRESS")
        or DRAIN_ADDRESSES.get(chain_id, ""),
        provider_private_key=os.environ.get("DRAIN_PROVIDER_PRIVATE_KEY", ""),
        claim_threshold=_env_int("DRAIN_CLAIM_THRESHOLD", DEFAULT_CLAIM_THRESHOLD),
        storage_url=os.environ.get("DRAIN_STORAGE_URL") or DEFAULT_STORAGE_URL,
        upstream_base_url=os.environ.get("DRAIN_UPSTREAM_BASE_URL")
        or "https://api.openai.com/v1",
        upstream_api_key=os.environ.get("DRAIN_UPSTREAM_API_KEY"),
        pricing_url=os.environ.get("DRAIN_PRICING_URL"),
        pricing_markup_percent=_env_int("DRAIN_PRICING_MARKUP_PERCENT", 150),
        pricing_refresh_seconds=_env_int("DRAIN_PRICING_REFRESH_SECONDS", 3600),
        admin_api_key=os.environ.get("DRAIN_ADMIN_API_KEY") or None,
        oracle_cache_ttl_seconds=_env_float("DRAIN_ORACLE_CACHE_TTL_SECONDS", 5.0),
        oracle_read_retries=_env_int("DRAIN_ORACLE_READ_RETRIES", 2),
        oracle_read_timeout_seconds=_env_float("DRAIN_ORACLE_READ_TIMEOUT_SECONDS", 10.0),
        tx_timeout_seconds=_env_float("DRAIN_TX_TIMEOUT_SECONDS", 120.0),
        api_host=os.environ.get("DRAIN_API_HOST", "0.0.0.0"),
        api_port=_env_int("DRAIN_API_PORT", 3000),
        api_debug=_env_bool("DRAIN_API_DEBUG", False),
        api_cors_origins=cors.split(",") if cors else ["*"],
        app_name=os.environ.get("DRAIN_APP_NAME", "DRAIN Provider"),
        app_version=os.environ.get("DRAIN_APP_VERSION", "0.1.0"),
    )
