"""Cost engine: per-model pricing tables and usage-to-cost conversion.

All settlement arithmetic is integer. Upstream price lists quote decimal USD per
million tokens; they are converted once, at refresh time, into smallest token
units per 1K tokens with ``decimal.Decimal`` and ceiling rounding.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from datetime import datetime, timezone
from decimal import ROUND_CEILING, Decimal
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field

from ....domain.errors import ModelNotSupported

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
MIN_OUTPUT_TOKENS = 50

# USDC smallest units per 1K tokens
DEFAULT_MODEL_PRICES: Dict[str, tuple[int, int]] = {
    "gpt-4o": (7500, 22500),
    "gpt-4o-mini": (225, 900),
    "gpt-4-turbo": (10000, 30000),
    "gpt-3.5-turbo": (500, 1500),
}


class ModelPricing(BaseModel):
    model_config = ConfigDict(frozen=True)

    input_per_k: int = Field(..., gt=0)
    output_per_k: int = Field(..., gt=0)


class PricingTable(BaseModel):
    """Immutable snapshot of model prices.

    Refreshes build a new table and swap the reference; a table is never
    mutated after construction.
    """

    model_config = ConfigDict(frozen=True)

    models: Mapping[str, ModelPricing]
    source: str = "default"
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def supports(self, model: str) -> bool:
        return model in self.models

    def get(self, model: str) -> ModelPricing:
        pricing = self.models.get(model)
        if pricing is None:
            available = ", ".join(sorted(self.models))
            raise ModelNotSupported(
                f"Model '{model}' not supported. Available: {available}"
            )
        return pricing

    def model_ids(self) -> List[str]:
        return sorted(self.models)


def default_pricing_table() -> PricingTable:
    return PricingTable(
        models={
            model: ModelPricing(input_per_k=inp, output_per_k=out)
            for model, (inp, out) in DEFAULT_MODEL_PRICES.items()
        },
        source="default",
    )


def calculate_cost(pricing: ModelPricing, input_units: int, output_units: int) -> int:
    """Integer cost, each component floored: units * price_per_k // 1000."""
    if input_units < 0 or output_units < 0:
        raise ValueError("Usage counts must be non-negative")
    return (input_units * pricing.input_per_k) // 1000 + (
        output_units * pricing.output_per_k
    ) // 1000


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_input_tokens(messages: Sequence[Any]) -> int:
    """Character heuristic over the compact JSON encoding of the messages."""
    encoded = json.dumps(list(messages), separators=(",", ":"), ensure_ascii=False)
    return estimate_tokens(encoded)


def estimate_preauth_cost(
    pricing: ModelPricing,
    messages: Sequence[Any],
    max_tokens: Optional[int] = None,
) -> int:
    """Conservative lower bound used to reject clearly underfunded requests early."""
    output_tokens = MIN_OUTPUT_TOKENS
    if max_tokens is not None and 0 < max_tokens < MIN_OUTPUT_TOKENS:
        output_tokens = max_tokens
    return calculate_cost(pricing, estimate_input_tokens(messages), output_tokens)


class UpstreamModelPrice(BaseModel):
    """A model as quoted by an upstream price list (USD per million tokens)."""

    id: str
    input_price_per_million: Decimal = Field(..., ge=0)
    output_price_per_million: Decimal = Field(..., ge=0)


def _per_k_units(price_per_million: Decimal, markup_percent: int) -> int:
    # per_million / 1000 tokens * 10^6 units * markup / 100
    scaled = price_per_million * 10 * markup_percent
    return max(1, int(scaled.to_integral_value(rounding=ROUND_CEILING)))


def convert_upstream_price(price: UpstreamModelPrice, markup_percent: int) -> ModelPricing:
    return ModelPricing(
        input_per_k=_per_k_units(price.input_price_per_million, markup_percent),
        output_per_k=_per_k_units(price.output_price_per_million, markup_percent),
    )


def build_pricing_table(
    prices: Sequence[UpstreamModelPrice], markup_percent: int, source: str = "upstream"
) -> PricingTable:
    return PricingTable(
        models={p.id: convert_upstream_price(p, markup_percent) for p in prices},
        source=source,
    )


class PriceListSource(Protocol):
    async def fetch_prices(self) -> List[UpstreamModelPrice]:
        ...


class PricingService:
    """Owns the current PricingTable and refreshes it from an upstream list."""

    def __init__(
        self,
        source: Optional[PriceListSource] = None,
        markup_percent: int = 150,
        initial_table: Optional[PricingTable] = None,
    ):
        if markup_percent <= 0:
            raise ValueError("markup_percent must be positive")
        self.source = source
        self.markup_percent = markup_percent
        self._table = initial_table or default_pricing_table()
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def table(self) -> PricingTable:
        return self._table

    def get_pricing(self, model: str) -> ModelPricing:
        return self._table.get(model)

    async def refresh(self) -> PricingTable:
        """Fetch and swap in a new table; keeps the current one on any failure."""
        if self.source is None:
            return self._table
        try:
            prices = await self.source.fetch_prices()
        except Exception as e:
            logger.warning("Pricing refresh failed, keeping %s prices: %s", self._table.source, e)
            return self._table
        if not prices:
            logger.warning("Upstream price list was empty, keeping %s prices", self._table.source)
            return self._table

        self._table = build_pricing_table(prices, self.markup_percent)
        logger.info(
            "Loaded pricing for %d models (%d%% markup)",
            len(self._table.models),
            self.markup_percent - 100,
        )
        return self._table

    async def _refresh_forever(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            await self.refresh()

    def start_periodic_refresh(self, interval_seconds: float) -> None:
        if self.source is None or self._task is not None:
            return
        self._task = asyncio.create_task(self._refresh_forever(interval_seconds))

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
