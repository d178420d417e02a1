"""Domain-specific exceptions.

Every protocol failure carries a stable snake_case ``code`` that is used on the
wire (``X-DRAIN-Error``) and a ``retryable`` flag telling callers whether the
same request may succeed later without changes.
"""

from __future__ import annotations

from typing import Optional


class DrainError(Exception):
    """Base class for all DRAIN protocol errors."""

    code: str = "drain_error"
    retryable: bool = False

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code


# Voucher validation (provider side)


class MalformedVoucher(DrainError):
    """Voucher fields have the wrong shape (raised before any crypto work)."""

    code = "malformed_voucher"


class ChannelNotFound(DrainError):
    """The oracle reports an empty consumer slot for the channel."""

    code = "channel_not_found"


class WrongProvider(DrainError):
    """The channel pays a different provider than this one."""

    code = "wrong_provider"


class ChannelExpired(DrainError):
    """The channel reached its expiry and can no longer accept vouchers."""

    code = "channel_expired"


class InsufficientFunds(DrainError):
    """The voucher does not cover everything billed so far plus the new charge."""

    code = "insufficient_funds"

    def __init__(self, required: int, provided: int, message: Optional[str] = None):
        self.required = required
        self.provided = provided
        self.shortfall = max(0, required - provided)
        super().__init__(
            message
            or f"Voucher covers {provided} but {required} is required "
            f"(short by {self.shortfall})"
        )


class InsufficientFundsPost(InsufficientFunds):
    """Pre-authorization passed but the actual cost is not covered."""

    code = "insufficient_funds_post"


class ExceedsDeposit(DrainError):
    """Voucher amount is larger than the channel deposit."""

    code = "exceeds_deposit"

    def __init__(self, amount: int, deposit: int) -> None:
        self.amount = amount
        self.deposit = deposit
        super().__init__(f"Voucher amount {amount} exceeds channel deposit {deposit}")


class InvalidNonce(DrainError):
    """Nonce is not strictly greater than the last accepted nonce."""

    code = "invalid_nonce"

    def __init__(self, nonce: int, last_nonce: int) -> None:
        self.nonce = nonce
        self.last_nonce = last_nonce
        super().__init__(f"Nonce must be increasing. Got {nonce}, expected > {last_nonce}")


class AmountDecreased(DrainError):
    """Cumulative amount is lower than the last accepted voucher's amount."""

    code = "amount_decreased"

    def __init__(self, amount: int, last_amount: int) -> None:
        self.amount = amount
        self.last_amount = last_amount
        super().__init__(
            f"Cumulative amount must not decrease. Got {amount}, last accepted {last_amount}"
        )


class InvalidSignature(DrainError):
    """Recovered signer does not match the channel consumer."""

    code = "invalid_signature"


class AuthorizationAlreadySettled(DrainError):
    """A pre-authorization handle was settled more than once."""

    code = "authorization_already_settled"


# Consumer side


class DepositExceeded(DrainError):
    """Signing would authorize more than the channel deposit."""

    code = "deposit_exceeded"

    def __init__(self, new_total: int, deposit: int, claimed: int = 0) -> None:
        self.new_total = new_total
        self.deposit = deposit
        self.claimed = claimed
        self.remaining = deposit - claimed
        super().__init__(
            f"Cumulative total {new_total} would exceed deposit {deposit} "
            f"(claimed {claimed}, remaining {self.remaining})"
        )


class ChannelNotExpired(DrainError):
    """Close was requested before the channel expiry."""

    code = "channel_not_expired"

    def __init__(self, channel_id: str, expiry: int, seconds_remaining: int) -> None:
        self.channel_id = channel_id
        self.expiry = expiry
        self.seconds_remaining = seconds_remaining
        super().__init__(
            f"Channel {channel_id} has not expired yet. "
            f"{seconds_remaining} seconds remaining (expiry {expiry})"
        )


class InsufficientAllowance(DrainError):
    """Token allowance for the channel contract is below the deposit."""

    code = "insufficient_allowance"

    def __init__(self, allowance: int, required: int) -> None:
        self.allowance = allowance
        self.required = required
        super().__init__(
            f"Insufficient token allowance. Have: {allowance}, need: {required}. "
            "Approve more first."
        )


class UnknownChannel(DrainError):
    """The consumer has no local signing state for the channel."""

    code = "unknown_channel"


class NoPresignedVoucher(DrainError):
    """The pre-signed voucher queue for the channel is empty."""

    code = "no_presigned_voucher"


# Ledger / transport


class OnChainFailure(DrainError):
    """An oracle read or write failed.

    ``reason`` is one of ``reverted`` (mined with failure status), ``timeout``
    (never confirmed within the wait window) or ``rpc`` (transport problem).
    """

    code = "on_chain_failure"

    def __init__(
        self,
        message: str,
        *,
        reason: str = "rpc",
        tx_hash: Optional[str] = None,
    ) -> None:
        self.reason = reason
        self.tx_hash = tx_hash
        super().__init__(message)

    @property  # type: ignore[override]
    def retryable(self) -> bool:
        return self.reason == "rpc"


class ModelNotSupported(DrainError):
    """No pricing is known for the requested model."""

    code = "model_not_supported"


class VoucherRequired(DrainError):
    """A paid endpoint was called without a voucher."""

    code = "voucher_required"


class PaymentRejected(DrainError):
    """The provider answered 402; ``error_code`` is its ``X-DRAIN-Error`` value."""

    code = "payment_rejected"

    def __init__(
        self,
        error_code: str,
        message: Optional[str] = None,
        *,
        required: Optional[int] = None,
        provided: Optional[int] = None,
    ) -> None:
        self.error_code = error_code
        self.required = required
        self.provided = provided
        super().__init__(message or f"Provider rejected payment: {error_code}")
