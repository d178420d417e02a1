"""Provider-side voucher validation, charge recording and claim batching."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, Optional, Tuple

from ....crypto.voucher_codec import (
    VoucherDomain,
    parse_channel_id,
    parse_signature,
    verify_voucher,
)
from ....domain.entities import Channel, ChannelState, StoredVoucher, Voucher
from ....domain.errors import (
    AuthorizationAlreadySettled,
    DrainError,
    InsufficientFunds,
    InsufficientFundsPost,
    InvalidSignature,
    OnChainFailure,
)
from ....domain.ledger_repository import ChannelLedgerRepository
from ....domain.shared import ChannelOracleProtocol
from ...shared.channel_locks import ChannelLocks
from ..dtos import (
    Authorization,
    ChargeReceipt,
    ClaimOutcome,
    ClaimReport,
    ClaimStatus,
    ProviderStats,
    ValidationResult,
)
from .voucher_validators import (
    is_claim_due,
    validate_amount_not_decreased,
    validate_channel_exists,
    validate_covers_charge,
    validate_nonce,
    validate_not_expired,
    validate_provider,
    validate_within_deposit,
)

logger = logging.getLogger(__name__)


class VoucherLedgerService:
    """Validates vouchers, records charges and claims payouts for one provider.

    Every mutation of a channel's ledger entry happens while holding that
    channel's lock, so concurrent requests on the same channel observe each
    other's recorded charges. Different channels proceed in parallel.
    """

    def __init__(
        self,
        ledger_repository: ChannelLedgerRepository,
        channel_oracle: ChannelOracleProtocol,
        claim_threshold: int,
        *,
        locks: Optional[ChannelLocks] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.ledger_repository = ledger_repository
        self.channel_oracle = channel_oracle
        self.claim_threshold = claim_threshold
        self.locks = locks or ChannelLocks()
        self._clock = clock
        self._claim_run_lock = asyncio.Lock()
        # channel id -> hash of a claim sent but not confirmed or not recorded
        self._pending_claims: Dict[str, str] = {}

    @property
    def provider_address(self) -> str:
        return self.channel_oracle.address

    @property
    def domain(self) -> VoucherDomain:
        return VoucherDomain(
            chain_id=self.channel_oracle.chain_id,
            verifying_contract=self.channel_oracle.contract_address,
        )

    def _now(self) -> int:
        return int(self._clock())

    async def _load_state(self, channel: Channel) -> ChannelState:
        state = await self.ledger_repository.get_channel_state(channel.id)
        if state is None:
            # first sight; persisted only once a charge is recorded
            state = ChannelState(
                channel_id=channel.id.lower(),
                consumer=channel.consumer,
                deposit=channel.deposit,
            )
        return state

    async def _check(
        self, voucher: Voucher, required_amount: int
    ) -> Tuple[Channel, ChannelState]:
        """Run every acceptance rule in order; raises the first DrainError hit."""
        # 1) shape
        parse_channel_id(voucher.channel_id)
        parse_signature(voucher.signature)

        # 2-3) on-chain view
        channel = await self.channel_oracle.get_channel(voucher.channel_id)
        validate_channel_exists(channel)
        validate_provider(channel, self.provider_address)
        validate_not_expired(channel, self._now())

        # 4) local ledger
        state = await self._load_state(channel)

        # 5-7) amounts and ordering
        validate_covers_charge(voucher.amount, state.total_charged, required_amount)
        validate_within_deposit(voucher.amount, channel.deposit)
        validate_nonce(voucher.nonce, state.last_voucher)
        validate_amount_not_decreased(voucher.amount, state.last_voucher)

        # 8) signer must be the consumer the oracle reports
        if not verify_voucher(voucher, self.domain, channel.consumer):
            raise InvalidSignature("Voucher signature does not match channel consumer")

        return channel, state

    async def validate_voucher(
        self, voucher: Voucher, required_amount: int
    ) -> ValidationResult:
        """Check a voucher without mutating anything.

        Protocol rejections come back as ``valid=False`` with the error;
        oracle failures propagate as OnChainFailure.
        """
        try:
            channel, state = await self._check(voucher, required_amount)
        except OnChainFailure:
            raise
        except DrainError as e:
            logger.info(
                "Voucher rejected: %s (channel %s, nonce %s)",
                e.code,
                voucher.channel_id,
                voucher.nonce,
            )
            return ValidationResult(valid=False, error=e)
        return ValidationResult(valid=True, channel=channel, channel_state=state)

    async def _apply_charge(
        self, voucher: Voucher, state: ChannelState, actual_cost: int
    ) -> ChannelState:
        stored = StoredVoucher.from_voucher(voucher, consumer=state.consumer)
        state.apply_charge(stored, actual_cost)
        return await self.ledger_repository.save_charge(state, stored)

    async def _recheck_locked(
        self, voucher: Voucher, snapshot: ChannelState, actual_cost: int
    ) -> ChannelState:
        """Re-read the ledger under the channel lock and re-apply the amount rules."""
        current = await self.ledger_repository.get_channel_state(voucher.channel_id)
        state = current if current is not None else snapshot.model_copy(deep=True)
        try:
            validate_covers_charge(voucher.amount, state.total_charged, actual_cost)
        except InsufficientFunds as e:
            raise InsufficientFundsPost(required=e.required, provided=e.provided) from e
        validate_within_deposit(voucher.amount, state.deposit)
        validate_nonce(voucher.nonce, state.last_voucher)
        validate_amount_not_decreased(voucher.amount, state.last_voucher)
        return state

    async def record_charge(
        self, voucher: Voucher, channel_state: ChannelState, actual_cost: int
    ) -> ChannelState:
        """Record a rendered charge against a voucher that passed validation.

        Call at most once per accepted voucher. The ledger is re-read under the
        channel lock, so a voucher superseded in the meantime is rejected.
        """
        async with self.locks.for_channel(voucher.channel_id):
            state = await self._recheck_locked(voucher, channel_state, actual_cost)
            return await self._apply_charge(voucher, state, actual_cost)

    async def preauthorize(self, voucher: Voucher, estimate: int) -> Authorization:
        """Validate against an estimated cost before doing the work.

        Raises the DrainError that rejected the voucher. Nothing is persisted.
        """
        try:
            channel, state = await self._check(voucher, estimate)
        except DrainError as e:
            if not isinstance(e, OnChainFailure):
                logger.info(
                    "Pre-authorization rejected: %s (channel %s)", e.code, voucher.channel_id
                )
            raise
        return Authorization(
            voucher=voucher, channel=channel, channel_state=state, estimate=estimate
        )

    async def settle(self, authorization: Authorization, actual_cost: int) -> ChargeReceipt:
        """Bill the actual cost of an authorized request. The only mutating step.

        Raises:
            AuthorizationAlreadySettled: If this handle was settled before.
            InsufficientFundsPost: If the voucher does not cover the actual cost.
            InvalidNonce/AmountDecreased: If a later voucher was recorded meanwhile.
        """
        if not authorization.consume():
            raise AuthorizationAlreadySettled("Authorization has already been settled")

        voucher = authorization.voucher
        async with self.locks.for_channel(voucher.channel_id):
            state = await self._recheck_locked(
                voucher, authorization.channel_state, actual_cost
            )
            state = await self._apply_charge(voucher, state, actual_cost)

        return ChargeReceipt(
            channel_id=state.channel_id,
            nonce=voucher.nonce,
            cost=actual_cost,
            total_charged=state.total_charged,
            remaining=state.remaining,
        )

    async def claim_payments(self, force_all: bool = False) -> ClaimReport:
        """Claim every channel whose unclaimed value reached the threshold.

        A failure on one channel is recorded in the report and never stops the
        run. Runs do not overlap.
        """
        report = ClaimReport()
        async with self._claim_run_lock:
            for channel_id in await self.ledger_repository.list_channel_ids():
                outcome = await self._claim_channel(channel_id, force_all)
                report.outcomes.append(outcome)
        claimed = sum(1 for o in report.outcomes if o.status == ClaimStatus.CLAIMED)
        logger.info(
            "Claim run finished: %d claimed, %d failed, %d skipped",
            claimed,
            len(report.failures),
            len(report.outcomes) - claimed - len(report.failures),
        )
        return report

    async def _claim_channel(self, channel_id: str, force_all: bool) -> ClaimOutcome:
        try:
            voucher = await self.ledger_repository.get_highest_voucher(channel_id)
        except Exception as e:
            logger.exception("Could not load vouchers for %s", channel_id)
            return ClaimOutcome(
                channel_id=channel_id,
                status=ClaimStatus.FAILED,
                reason=str(e) or type(e).__name__,
            )
        if voucher is None:
            return ClaimOutcome(
                channel_id=channel_id, status=ClaimStatus.SKIPPED, reason="no_voucher"
            )
        if voucher.claimed:
            return ClaimOutcome(
                channel_id=channel_id,
                status=ClaimStatus.SKIPPED,
                amount=voucher.amount,
                nonce=voucher.nonce,
                reason="already_claimed",
            )

        try:
            self.channel_oracle.invalidate(channel_id)
            channel = await self.channel_oracle.get_channel(channel_id)
            if not channel.exists:
                logger.info("Skipping claim for closed channel %s", channel_id)
                return ClaimOutcome(
                    channel_id=channel_id, status=ClaimStatus.SKIPPED, reason="closed"
                )
            if channel.claimed >= voucher.amount:
                # an earlier claim landed after we stopped waiting for it
                logger.info(
                    "Channel %s already claimed %d on chain, recording it",
                    channel_id,
                    channel.claimed,
                )
                return await self._record_claim(
                    channel_id,
                    voucher,
                    self._pending_claims.get(channel_id),
                    status=ClaimStatus.SKIPPED,
                    reason="claimed_on_chain",
                )
            if not is_claim_due(
                voucher.amount, channel.claimed, self.claim_threshold, force_all
            ):
                logger.info(
                    "Skipping claim for %s: unclaimed %d below threshold %d",
                    channel_id,
                    voucher.amount - channel.claimed,
                    self.claim_threshold,
                )
                return ClaimOutcome(
                    channel_id=channel_id,
                    status=ClaimStatus.SKIPPED,
                    amount=voucher.amount,
                    nonce=voucher.nonce,
                    reason="below_threshold",
                )

            tx_hash = await self.channel_oracle.claim(
                channel_id, voucher.amount, voucher.nonce, voucher.signature
            )
        except OnChainFailure as e:
            logger.error("Claim failed for %s (%s): %s", channel_id, e.reason, e.message)
            if e.tx_hash:
                self._pending_claims[channel_id] = e.tx_hash
            return ClaimOutcome(
                channel_id=channel_id,
                status=ClaimStatus.FAILED,
                amount=voucher.amount,
                nonce=voucher.nonce,
                tx_hash=e.tx_hash,
                reason=e.reason,
            )
        except Exception as e:
            logger.exception("Unexpected error claiming %s", channel_id)
            return ClaimOutcome(
                channel_id=channel_id,
                status=ClaimStatus.FAILED,
                amount=voucher.amount,
                nonce=voucher.nonce,
                reason=str(e) or type(e).__name__,
            )

        logger.info(
            "Claimed %d on channel %s (nonce %d): %s",
            voucher.amount,
            channel_id,
            voucher.nonce,
            tx_hash,
        )
        return await self._record_claim(channel_id, voucher, tx_hash)

    async def _record_claim(
        self,
        channel_id: str,
        voucher: StoredVoucher,
        tx_hash: Optional[str],
        status: ClaimStatus = ClaimStatus.CLAIMED,
        reason: Optional[str] = None,
    ) -> ClaimOutcome:
        """Mark a voucher claimed locally. The claim itself is already on chain."""
        try:
            async with self.locks.for_channel(channel_id):
                await self.ledger_repository.mark_claimed(channel_id, voucher.nonce, tx_hash)
        except Exception:
            logger.exception(
                "Claim on %s is on chain (%s) but could not be recorded", channel_id, tx_hash
            )
            if tx_hash:
                self._pending_claims[channel_id] = tx_hash
            return ClaimOutcome(
                channel_id=channel_id,
                status=ClaimStatus.FAILED,
                amount=voucher.amount,
                nonce=voucher.nonce,
                tx_hash=tx_hash,
                reason="record_failed",
            )
        self._pending_claims.pop(channel_id, None)
        self.channel_oracle.invalidate(channel_id)
        return ClaimOutcome(
            channel_id=channel_id,
            status=status,
            amount=voucher.amount,
            nonce=voucher.nonce,
            tx_hash=tx_hash,
            reason=reason,
        )

    async def purge_closed_channel(self, channel_id: str) -> bool:
        """Delete local records for a channel the oracle reports as closed.

        Raises:
            ValueError: If the channel still exists on-chain.
        """
        self.channel_oracle.invalidate(channel_id)
        channel = await self.channel_oracle.get_channel(channel_id)
        if channel.exists:
            raise ValueError("Channel is still open on-chain")
        async with self.locks.for_channel(channel_id):
            purged = await self.ledger_repository.purge_channel(channel_id)
        self.locks.discard(channel_id)
        if purged:
            logger.info("Purged ledger records for closed channel %s", channel_id)
        return purged

    async def get_stats(self) -> ProviderStats:
        channel_count = 0
        voucher_count = 0
        total_earned = 0
        unclaimed = 0
        for channel_id in await self.ledger_repository.list_channel_ids():
            state = await self.ledger_repository.get_channel_state(channel_id)
            if state is None:
                continue
            vouchers = await self.ledger_repository.get_vouchers(channel_id)
            channel_count += 1
            voucher_count += len(vouchers)
            total_earned += state.total_charged
            highest = max((v.amount for v in vouchers), default=0)
            claimed = max((v.amount for v in vouchers if v.claimed), default=0)
            unclaimed += highest - claimed
        return ProviderStats(
            provider=self.provider_address,
            chain_id=self.channel_oracle.chain_id,
            channel_count=channel_count,
            voucher_count=voucher_count,
            total_earned=total_earned,
            unclaimed=unclaimed,
        )
