"""Pure validation functions for inbound vouchers.

These functions contain the provider's acceptance rules and can be tested in
isolation without an oracle, a store or any cryptography. They are applied in
the order ``VoucherLedgerService`` calls them, which is also the order in which
rejection reasons are reported.
"""

from __future__ import annotations

from typing import Optional

from ....domain.entities import Channel, StoredVoucher
from ....domain.errors import (
    AmountDecreased,
    ChannelExpired,
    ChannelNotFound,
    ExceedsDeposit,
    InsufficientFunds,
    InvalidNonce,
    WrongProvider,
)


def validate_channel_exists(channel: Channel) -> None:
    """Raises ChannelNotFound if the oracle reports an empty consumer slot."""
    if not channel.exists:
        raise ChannelNotFound(f"Channel {channel.id} not found or closed")


def validate_provider(channel: Channel, provider_address: str) -> None:
    """Raises WrongProvider if the channel pays someone else."""
    if channel.provider.lower() != provider_address.lower():
        raise WrongProvider("Channel is not for this provider")


def validate_not_expired(channel: Channel, now: int) -> None:
    """Raises ChannelExpired once ``now >= expiry``."""
    if channel.is_expired(now):
        raise ChannelExpired(f"Channel {channel.id} expired at {channel.expiry}")


def validate_covers_charge(amount: int, total_charged: int, required: int) -> None:
    """The voucher must cover everything billed so far plus the new charge.

    Args:
        amount: The voucher's cumulative amount
        total_charged: What this provider has already billed on the channel
        required: Cost of the request being authorized

    Raises:
        InsufficientFunds: With ``required`` and ``provided = amount - total_charged``.
    """
    expected_total = total_charged + required
    if amount < expected_total:
        raise InsufficientFunds(required=required, provided=amount - total_charged)


def validate_within_deposit(amount: int, deposit: int) -> None:
    if amount > deposit:
        raise ExceedsDeposit(amount, deposit)


def validate_nonce(nonce: int, last_voucher: Optional[StoredVoucher]) -> None:
    """Strictly increasing nonce; a byte-identical replay is rejected too."""
    if last_voucher is not None and nonce <= last_voucher.nonce:
        raise InvalidNonce(nonce, last_voucher.nonce)


def validate_amount_not_decreased(
    amount: int, last_voucher: Optional[StoredVoucher]
) -> None:
    """Accepted amounts never go down. An equal amount with a higher nonce is fine."""
    if last_voucher is not None and amount < last_voucher.amount:
        raise AmountDecreased(amount, last_voucher.amount)


def is_claim_due(
    amount: int, claimed_on_chain: int, threshold: int, force_all: bool = False
) -> bool:
    """Whether a channel's highest voucher is worth a claim transaction."""
    unclaimed = amount - claimed_on_chain
    if unclaimed <= 0:
        return False
    return force_all or unclaimed >= threshold
