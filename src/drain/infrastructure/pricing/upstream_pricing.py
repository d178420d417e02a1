"""Fetches an upstream model price list and normalizes it to USD per million tokens."""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import httpx

from ...application.provider.use_cases.pricing import UpstreamModelPrice
from ..http.http_client import AsyncHttpClient

logger = logging.getLogger(__name__)

PER_MILLION = Decimal(1_000_000)


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except InvalidOperation:
        return None
    return result if result.is_finite() and result >= 0 else None


def parse_price_list(data: Dict[str, Any]) -> List[UpstreamModelPrice]:
    """Accept either of the two common price-list shapes.

    ``{"models": [{"id", "input_price", "output_price"}]}`` quotes USD per
    million tokens. ``{"data": [{"id", "pricing": {"prompt", "completion"}}]}``
    (OpenRouter style) quotes USD per single token. Entries without usable
    prices are skipped.
    """
    prices: List[UpstreamModelPrice] = []
    for entry in data.get("models") or []:
        inp = _decimal(entry.get("input_price"))
        out = _decimal(entry.get("output_price"))
        if entry.get("id") and inp is not None and out is not None:
            prices.append(
                UpstreamModelPrice(
                    id=entry["id"],
                    input_price_per_million=inp,
                    output_price_per_million=out,
                )
            )
    for entry in data.get("data") or []:
        pricing = entry.get("pricing") or {}
        inp = _decimal(pricing.get("prompt"))
        out = _decimal(pricing.get("completion"))
        if entry.get("id") and inp is not None and out is not None:
            prices.append(
                UpstreamModelPrice(
                    id=entry["id"],
                    input_price_per_million=inp * PER_MILLION,
                    output_price_per_million=out * PER_MILLION,
                )
            )
    return prices


class UpstreamPriceList:
    """PriceListSource over HTTP."""

    def __init__(
        self,
        url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._url = url
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.http = AsyncHttpClient(url, timeout=timeout, headers=headers, transport=transport)

    async def fetch_prices(self) -> List[UpstreamModelPrice]:
        resp = await self.http.get(self._url)
        prices = parse_price_list(resp.json())
        logger.info("Fetched %d model prices from %s", len(prices), self._url)
        return prices

    async def aclose(self) -> None:
        await self.http.aclose()
