"""Data Transfer Objects for the provider application layer."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from ...domain.entities import Channel, ChannelState, Voucher
from ...domain.errors import DrainError


class ValidationResult(BaseModel):
    """Outcome of a non-mutating voucher check."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    valid: bool
    error: Optional[DrainError] = None
    channel: Optional[Channel] = None
    channel_state: Optional[ChannelState] = None

    @property
    def error_code(self) -> Optional[str]:
        return self.error.code if self.error else None


class Authorization(BaseModel):
    """Handle returned by ``preauthorize``; it can be settled exactly once."""

    voucher: Voucher
    channel: Channel
    channel_state: ChannelState
    estimate: int
    authorized_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    _settled: bool = PrivateAttr(default=False)

    @property
    def settled(self) -> bool:
        return self._settled

    def consume(self) -> bool:
        """Mark settled; returns False if it already was."""
        if self._settled:
            return False
        self._settled = True
        return True


class ChargeReceipt(BaseModel):
    """What a settled request cost and where the channel stands afterwards."""

    model_config = ConfigDict(frozen=True)

    channel_id: str
    nonce: int
    cost: int
    total_charged: int
    remaining: int


class ClaimStatus(str, Enum):
    CLAIMED = "claimed"
    SKIPPED = "skipped"
    FAILED = "failed"


class ClaimOutcome(BaseModel):
    channel_id: str
    status: ClaimStatus
    amount: Optional[int] = None
    nonce: Optional[int] = None
    tx_hash: Optional[str] = None
    reason: Optional[str] = None


class ClaimReport(BaseModel):
    """Per-channel results of one claim run."""

    outcomes: List[ClaimOutcome] = Field(default_factory=list)

    @property
    def tx_hashes(self) -> List[str]:
        """Hashes of the claims this run landed. Failed attempts are excluded."""
        return [
            o.tx_hash
            for o in self.outcomes
            if o.status == ClaimStatus.CLAIMED and o.tx_hash
        ]

    @property
    def failures(self) -> List[ClaimOutcome]:
        return [o for o in self.outcomes if o.status == ClaimStatus.FAILED]


class ProviderStats(BaseModel):
    provider: str
    chain_id: int
    channel_count: int
    voucher_count: int
    total_earned: int
    unclaimed: int


class ModelPriceDTO(BaseModel):
    """Per-1K-token prices as decimal token strings ("0.0075")."""

    model_config = ConfigDict(populate_by_name=True)

    input_per_1k_tokens: str = Field(..., alias="inputPer1kTokens")
    output_per_1k_tokens: str = Field(..., alias="outputPer1kTokens")


class PricingResponseDTO(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    provider: str
    chain_id: int = Field(..., alias="chainId")
    currency: str = "USDC"
    decimals: int = 6
    models: Dict[str, ModelPriceDTO]


class ClaimRequestDTO(BaseModel):
    force: bool = False
