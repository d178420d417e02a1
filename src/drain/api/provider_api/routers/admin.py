"""Administrative routes (Provider): payout claims, stats and channel purge."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, status
from prometheus_client import Counter

from ....application.provider.dtos import ClaimRequestDTO, ClaimStatus
from ....application.provider.use_cases.voucher_ledger import VoucherLedgerService
from ....crypto.voucher_codec import parse_channel_id
from ....domain.errors import MalformedVoucher, OnChainFailure
from ..dependencies import get_voucher_ledger_service, require_admin

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)]
)


claims_total = Counter(
    "drain_claims_total",
    "Per-channel claim outcomes",
    ["result"],
)


@router.post("/claim")
async def claim_payments(
    claim_request: Optional[ClaimRequestDTO] = Body(None),
    ledger: VoucherLedgerService = Depends(get_voucher_ledger_service),
) -> Dict[str, Any]:
    """Claim every channel at or above the threshold (all of them with ``force``)."""
    force = claim_request.force if claim_request is not None else False
    report = await ledger.claim_payments(force_all=force)
    for outcome in report.outcomes:
        claims_total.labels(result=outcome.status.value).inc()
    return {
        "success": not report.failures,
        "claimed": sum(1 for o in report.outcomes if o.status == ClaimStatus.CLAIMED),
        "transactions": report.tx_hashes,
        "outcomes": [o.model_dump(mode="json") for o in report.outcomes],
    }


@router.get("/stats")
async def get_stats(
    ledger: VoucherLedgerService = Depends(get_voucher_ledger_service),
) -> Dict[str, Any]:
    """Ledger totals; amounts are decimal strings of smallest USDC units."""
    stats = await ledger.get_stats()
    return {
        "provider": stats.provider,
        "chainId": stats.chain_id,
        "channelCount": stats.channel_count,
        "voucherCount": stats.voucher_count,
        "totalEarned": str(stats.total_earned),
        "unclaimed": str(stats.unclaimed),
        "claimThreshold": str(ledger.claim_threshold),
    }


@router.delete("/channels/{channel_id}")
async def purge_channel(
    channel_id: str = Path(..., description="Channel identifier (bytes32 hex)"),
    ledger: VoucherLedgerService = Depends(get_voucher_ledger_service),
) -> Dict[str, Any]:
    """Drop local records of a channel that has been closed on-chain."""
    try:
        parse_channel_id(channel_id)
        purged = await ledger.purge_closed_channel(channel_id.lower())
    except MalformedVoucher as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except OnChainFailure as e:
        logger.error("Channel lookup failed for purge (%s): %s", e.reason, e.message)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Channel state unavailable",
        )
    return {"channelId": channel_id.lower(), "purged": purged}
