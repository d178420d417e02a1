"""Wire payloads for the voucher request header and the receipt returned with responses."""

from __future__ import annotations

from typing import Iterable, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, StrictInt, StrictStr, ValidationError
from pydantic.alias_generators import to_camel

from ...crypto.voucher_codec import (
    parse_channel_id,
    parse_signature,
    parse_uint256,
)
from ...domain.entities import Voucher
from ...domain.errors import MalformedVoucher

VOUCHER_HEADER = "X-DRAIN-Voucher"
COST_HEADER = "X-DRAIN-Cost"
TOTAL_HEADER = "X-DRAIN-Total"
REMAINING_HEADER = "X-DRAIN-Remaining"
CHANNEL_HEADER = "X-DRAIN-Channel"
ERROR_HEADER = "X-DRAIN-Error"
REQUIRED_HEADER = "X-DRAIN-Required"
PROVIDED_HEADER = "X-DRAIN-Provided"


class VoucherHeaderPayload(BaseModel):
    """JSON object carried in ``X-DRAIN-Voucher``.

    ``amount`` and ``nonce`` travel as decimal strings so uint256 values survive
    JSON parsers that use doubles. Integers are tolerated for older clients.
    """

    model_config = ConfigDict(
        extra="forbid", alias_generator=to_camel, populate_by_name=True
    )

    channel_id: StrictStr
    amount: Union[StrictStr, StrictInt]
    nonce: Union[StrictStr, StrictInt]
    signature: StrictStr

    def to_voucher(self) -> Voucher:
        parse_channel_id(self.channel_id)
        parse_signature(self.signature)
        nonce = parse_uint256(self.nonce, "nonce")
        if nonce < 1:
            raise MalformedVoucher("nonce must be at least 1")
        return Voucher(
            channel_id=self.channel_id.lower(),
            amount=parse_uint256(self.amount, "amount"),
            nonce=nonce,
            signature=self.signature,
        )


def parse_voucher_header(raw: str) -> Voucher:
    """Strictly decode an ``X-DRAIN-Voucher`` header into a Voucher."""
    try:
        payload = VoucherHeaderPayload.model_validate_json(raw)
    except ValidationError as e:
        raise MalformedVoucher(f"Invalid {VOUCHER_HEADER} format") from e
    return payload.to_voucher()


def serialize_voucher_header(voucher: Voucher) -> str:
    payload = VoucherHeaderPayload(
        channel_id=voucher.channel_id,
        amount=str(voucher.amount),
        nonce=str(voucher.nonce),
        signature=voucher.signature,
    )
    return payload.model_dump_json(by_alias=True)


class DrainReceipt(BaseModel):
    """Cost metadata the provider returns for a settled request."""

    model_config = ConfigDict(frozen=True)

    channel_id: str
    cost: int
    total: int
    remaining: int

    def to_headers(self) -> dict[str, str]:
        return {
            COST_HEADER: str(self.cost),
            TOTAL_HEADER: str(self.total),
            REMAINING_HEADER: str(self.remaining),
            CHANNEL_HEADER: self.channel_id,
        }

    def to_sse_trailer(self) -> str:
        """SSE comment lines appended after ``data: [DONE]`` on streams."""
        return (
            f": {COST_HEADER}: {self.cost}\n"
            f": {TOTAL_HEADER}: {self.total}\n"
            f": {REMAINING_HEADER}: {self.remaining}\n"
        )

    @classmethod
    def from_headers(
        cls, headers: Mapping[str, str], channel_id: Optional[str] = None
    ) -> Optional["DrainReceipt"]:
        """Read receipt headers, or None when the response carries none.

        ``headers`` should be case-insensitive (httpx.Headers is).
        """
        cost = headers.get(COST_HEADER)
        total = headers.get(TOTAL_HEADER)
        remaining = headers.get(REMAINING_HEADER)
        if cost is None or total is None or remaining is None:
            return None
        return cls(
            channel_id=headers.get(CHANNEL_HEADER) or channel_id or "",
            cost=int(cost),
            total=int(total),
            remaining=int(remaining),
        )

    @classmethod
    def from_sse_lines(
        cls, lines: Iterable[str], channel_id: str
    ) -> Optional["DrainReceipt"]:
        values: dict[str, str] = {}
        for line in lines:
            if not line.startswith(":"):
                continue
            name, sep, value = line[1:].strip().partition(":")
            if sep:
                values[name.strip()] = value.strip()
        return cls.from_headers(values, channel_id)


def error_body(code: str, message: str, error_type: str = "payment_required") -> dict:
    """OpenAI-style error object used by every non-2xx provider response."""
    return {"error": {"message": message, "type": error_type, "code": code}}
