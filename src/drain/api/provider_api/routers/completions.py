"""Paid chat completion route (Provider)."""

from __future__ import annotations

import logging
import time
from typing import AsyncIterator, Dict, Optional

import httpx
from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import JSONResponse, StreamingResponse
from prometheus_client import Counter, Histogram

from ....application.provider.use_cases.inference import (
    ChatCompletionRequest,
    InferenceOrchestrator,
)
from ....application.shared.voucher_payloads import (
    CHANNEL_HEADER,
    ERROR_HEADER,
    PROVIDED_HEADER,
    REQUIRED_HEADER,
    VOUCHER_HEADER,
    error_body,
    parse_voucher_header,
)
from ....domain.errors import (
    DrainError,
    InsufficientFunds,
    ModelNotSupported,
    OnChainFailure,
    VoucherRequired,
)
from ..dependencies import get_inference_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["completions"])


voucher_requests_total = Counter(
    "drain_voucher_requests_total",
    "Total paid requests processed",
    ["status"],
)

voucher_request_duration_seconds = Histogram(
    "drain_voucher_request_duration_seconds",
    "Wall time to process a paid request",
    ["status"],
)


def _observe(label: str, start_time: float) -> None:
    voucher_requests_total.labels(status=label).inc()
    elapsed = time.perf_counter() - start_time
    voucher_request_duration_seconds.labels(status=label).observe(elapsed)


async def _chain(first: str, rest: AsyncIterator[str]) -> AsyncIterator[str]:
    yield first
    async for line in rest:
        yield line


def payment_error_response(error: DrainError) -> JSONResponse:
    """402 with the error code in ``X-DRAIN-Error`` and amounts for funds errors."""
    headers: Dict[str, str] = {ERROR_HEADER: error.code}
    if isinstance(error, InsufficientFunds):
        headers[REQUIRED_HEADER] = str(error.required)
        headers[PROVIDED_HEADER] = str(error.provided)
    return JSONResponse(
        status_code=status.HTTP_402_PAYMENT_REQUIRED,
        content=error_body(error.code, error.message),
        headers=headers,
    )


@router.post("/chat/completions")
async def chat_completions(
    request: ChatCompletionRequest,
    voucher_header: Optional[str] = Header(None, alias=VOUCHER_HEADER),
    orchestrator: InferenceOrchestrator = Depends(get_inference_orchestrator),
):
    """Serve an OpenAI-compatible chat completion paid for by a voucher."""
    start_time = time.perf_counter()
    try:
        if not voucher_header:
            raise VoucherRequired(f"{VOUCHER_HEADER} header is required")
        voucher = parse_voucher_header(voucher_header)
        paid = await orchestrator.authorize(voucher, request)

        if request.stream:
            events = orchestrator.stream(paid)
            # opens the upstream stream so its failures still map to an error status
            first = await events.__anext__()
            _observe("success", start_time)
            return StreamingResponse(
                _chain(first, events),
                media_type="text/event-stream",
                headers={
                    CHANNEL_HEADER: voucher.channel_id,
                    "Cache-Control": "no-cache",
                },
            )

        result = await orchestrator.complete(paid)
        _observe("success", start_time)
        return JSONResponse(content=result.body, headers=result.receipt.to_headers())
    except ModelNotSupported as e:
        _observe("client_error", start_time)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=error_body(e.code, e.message, "invalid_request_error"),
        )
    except OnChainFailure as e:
        _observe("server_error", start_time)
        logger.error("Channel lookup failed (%s): %s", e.reason, e.message)
        return JSONResponse(
            status_code=(
                status.HTTP_503_SERVICE_UNAVAILABLE
                if e.retryable
                else status.HTTP_500_INTERNAL_SERVER_ERROR
            ),
            content=error_body(e.code, "Channel state unavailable", "server_error"),
            headers={ERROR_HEADER: e.code},
        )
    except DrainError as e:
        _observe("payment_required", start_time)
        return payment_error_response(e)
    except httpx.HTTPError as e:
        _observe("upstream_error", start_time)
        logger.error("Upstream request failed: %s", e)
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content=error_body("upstream_error", "Upstream request failed", "server_error"),
        )
    except Exception:
        _observe("server_error", start_time)
        logger.exception("Unexpected error serving chat completion")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=error_body("internal_error", "Internal server error", "server_error"),
        )
