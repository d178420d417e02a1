from __future__ import annotations

from typing import Any, Dict, List, Optional, Type
from types import TracebackType

import httpx
from pydantic import BaseModel

from ...application.provider.dtos import PricingResponseDTO
from ...application.shared.voucher_payloads import (
    ERROR_HEADER,
    PROVIDED_HEADER,
    REQUIRED_HEADER,
    VOUCHER_HEADER,
    DrainReceipt,
    serialize_voucher_header,
)
from ...domain.entities import Voucher
from ...domain.errors import PaymentRejected
from ..http.http_client import AsyncHttpClient


class ProviderResponse(BaseModel):
    body: Dict[str, Any]
    receipt: Optional[DrainReceipt] = None


def _optional_int(value: Optional[str]) -> Optional[int]:
    return int(value) if value is not None and value.isdigit() else None


def _error_message(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text or resp.reason_phrase
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or resp.reason_phrase)
    if isinstance(error, str):
        return error
    return resp.reason_phrase


class ProviderClient:
    """Asynchronous client for a DRAIN provider's HTTP API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 120.0,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._http = AsyncHttpClient(base_url, timeout=timeout, transport=transport)

    async def get_pricing(self) -> PricingResponseDTO:
        resp = await self._http.get("/v1/pricing")
        return PricingResponseDTO.model_validate(resp.json())

    async def list_models(self) -> List[str]:
        resp = await self._http.get("/v1/models")
        return [m["id"] for m in resp.json().get("data", [])]

    async def chat_completion(
        self, voucher: Voucher, body: Dict[str, Any]
    ) -> ProviderResponse:
        """Send a paid, non-streaming chat request.

        Raises:
            PaymentRejected: On 402, carrying the provider's error code.
            httpx.HTTPStatusError: On any other non-2xx answer.
        """
        resp = await self._http.post(
            "/v1/chat/completions",
            json={**body, "stream": False},
            headers={VOUCHER_HEADER: serialize_voucher_header(voucher)},
            raise_for_status=False,
        )
        if resp.status_code == 402:
            raise PaymentRejected(
                resp.headers.get(ERROR_HEADER, "payment_required"),
                _error_message(resp),
                required=_optional_int(resp.headers.get(REQUIRED_HEADER)),
                provided=_optional_int(resp.headers.get(PROVIDED_HEADER)),
            )
        resp.raise_for_status()
        return ProviderResponse(
            body=resp.json(),
            receipt=DrainReceipt.from_headers(resp.headers, voucher.channel_id),
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "ProviderClient":
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_value: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        await self.aclose()
